"""Tier capacity accounting.

Capacity is never stored as a counter: the remaining quantity of a tier is
``max_quantity - SUM(order.quantity)`` over every order that references it,
processed or not.  A reservation is the insertion of the order row itself,
done while the tier row is locked so two requests racing for the last slots
are serialized by the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func

from errors import CapacityExceeded, NotFound
from extensions import db
from models import Collective, Order, Tier

logger = logging.getLogger(__name__)


@dataclass
class Reservation:
    order: Order
    tier: Optional[Tier]
    available_after: Optional[int]  # None = unlimited


def find_tier_for_collective(collective: Collective, tier_id: int) -> Tier:
    """Return tier *tier_id* if it belongs to *collective* or one of its events."""
    event_ids = [
        row.id
        for row in Collective.query.with_entities(Collective.id).filter_by(
            parent_collective_id=collective.id, kind="EVENT"
        )
    ]
    tier = Tier.query.filter(
        Tier.id == tier_id,
        Tier.collective_id.in_([collective.id, *event_ids]),
    ).first()
    if not tier:
        raise NotFound(
            f"No tier found with tier id: {tier_id} for collective slug {collective.slug}"
        )
    return tier


def ordered_quantity(tier_id: int) -> int:
    """Sum of quantities of all orders currently holding capacity on the tier."""
    total = (
        db.session.query(func.coalesce(func.sum(Order.quantity), 0))
        .filter(Order.tier_id == tier_id)
        .scalar()
    )
    return int(total or 0)


def available_quantity(tier: Tier) -> Optional[int]:
    """Remaining slots on *tier*, or ``None`` when the tier is unlimited."""
    if tier.max_quantity is None:
        return None
    return max(0, tier.max_quantity - ordered_quantity(tier.id))


def tier_stats(tier: Tier) -> dict:
    total_orders = Order.query.filter_by(tier_id=tier.id).count()
    return {
        "totalOrders": total_orders,
        "totalQuantity": ordered_quantity(tier.id),
        "availableQuantity": available_quantity(tier),
    }


def reserve(order: Order, collective: Collective) -> Reservation:
    """Check capacity for *order* and insert it in the same transaction.

    The tier row is locked (``SELECT ... FOR UPDATE``) before the quantities
    are summed; the lock is held until the caller commits or rolls back.
    Raises :class:`NotFound` or :class:`CapacityExceeded`.  Does NOT commit.
    """
    if order.quantity is None or order.quantity < 1:
        order.quantity = 1

    if order.tier_id is None:
        db.session.add(order)
        db.session.flush()
        return Reservation(order=order, tier=None, available_after=None)

    tier = find_tier_for_collective(collective, order.tier_id)
    tier = Tier.query.filter_by(id=tier.id).with_for_update().one()

    available = available_quantity(tier)
    if available is not None and order.quantity > available:
        logger.info(
            "Tier %s sold out: requested %s, available %s",
            tier.id, order.quantity, available,
        )
        raise CapacityExceeded(f"No more tickets left for {tier.name}")

    db.session.add(order)
    db.session.flush()
    remaining = None if available is None else available - order.quantity
    logger.info(
        "Reserved %s on tier %s for order %s (remaining=%s)",
        order.quantity, tier.id, order.id, remaining,
    )
    return Reservation(order=order, tier=tier, available_after=remaining)


def release(order: Order) -> None:
    """Give back the capacity held by an unprocessed *order* by deleting it.

    Does NOT commit.
    """
    if order.is_processed:
        raise ValueError(f"Order {order.id} is processed; its capacity is consumed")
    logger.info("Releasing %s on tier %s (order %s)", order.quantity, order.tier_id, order.id)
    db.session.delete(order)
    db.session.flush()
