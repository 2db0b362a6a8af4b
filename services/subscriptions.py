"""Recurring billing records.

A Subscription is a copy of the tier's billing terms taken when the order is
paid.  Nothing here reads the tier again afterwards, so later tier edits
never change what an existing backer is charged.
"""

from __future__ import annotations

import logging
from typing import Optional

from extensions import db
from models import Subscription, Tier
from utils import utc_now

logger = logging.getLogger(__name__)


def create_from_tier(tier: Tier) -> Subscription:
    """Snapshot amount, currency and interval of *tier*.  Does NOT commit."""
    if not tier.is_recurring:
        raise ValueError(f"Tier {tier.id} has no recurring interval")
    sub = Subscription(
        amount=tier.amount,
        currency=tier.currency,
        interval=tier.interval,
        is_active=True,
    )
    db.session.add(sub)
    db.session.flush()
    logger.info(
        "Created subscription %s from tier %s (%s %s / %s)",
        sub.id, tier.id, sub.currency, sub.amount, sub.interval,
    )
    return sub


def attach_gateway_reference(sub: Subscription, reference: Optional[str]) -> None:
    if reference:
        sub.gateway_reference = reference


def deactivate(sub: Subscription, reason: str = "") -> bool:
    """Mark *sub* inactive.  Returns False if it already was."""
    if not sub.is_active:
        return False
    sub.is_active = False
    sub.deactivated_at = utc_now()
    db.session.commit()
    logger.info("Deactivated subscription %s (%s)", sub.id, reason or "no reason given")
    return True


def find_by_gateway_reference(reference: str) -> Optional[Subscription]:
    return Subscription.query.filter_by(gateway_reference=reference).first()
