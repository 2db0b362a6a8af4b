"""Order pipeline: validate → reserve → charge → provision → notify.

Everything up to and including the charge is all-or-nothing: a request
either ends with a processed order or leaves no order (and no consumed
capacity) behind.  Provisioning the membership and notifying subscribers
happen afterwards and are best-effort; their failures come back as
``warnings`` on the result.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from errors import (
    ErrorList,
    NotFound,
    PaymentError,
    PipelineError,
    ValidationFailed,
    raise_if_any,
)
from extensions import db
from models import Collective, Member, Order, Subscription, Tier, User
from services import activities, capacity, membership, payments
from services.audit import log_action
from services.payments import PaymentMethod
from utils import safe_int

logger = logging.getLogger(__name__)


class OrderState(str, enum.Enum):
    CREATED = "CREATED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PROCESSED = "PROCESSED"
    MEMBER_PROVISIONED = "MEMBER_PROVISIONED"
    NOTIFIED = "NOTIFIED"
    PAYMENT_FAILED = "PAYMENT_FAILED"


@dataclass
class OrderRequest:
    """A contribution request as the pipeline sees it."""
    collective_id: Optional[int] = None
    collective_slug: Optional[str] = None
    tier_id: Optional[int] = None
    quantity: int = 1
    payment_method: Optional[PaymentMethod] = None
    from_collective: Optional[dict] = None
    user: Optional[dict] = None
    public_message: Optional[str] = None
    total_amount: Optional[int] = None

    @classmethod
    def from_payload(cls, payload: dict) -> "OrderRequest":
        collective = payload.get("collective") or {}
        tier = payload.get("tier") or {}
        quantity = payload.get("quantity")
        total_amount = payload.get("totalAmount")
        return cls(
            collective_id=safe_int(collective.get("id"), default=None),
            collective_slug=collective.get("slug"),
            tier_id=safe_int(tier.get("id"), default=None),
            quantity=1 if quantity is None else safe_int(quantity, default=0),
            payment_method=PaymentMethod.from_dict(payload.get("paymentMethod")),
            from_collective=payload.get("fromCollective"),
            user=payload.get("user"),
            public_message=payload.get("publicMessage"),
            total_amount=None if total_amount is None else safe_int(total_amount, default=-1),
        )


@dataclass
class OrderResult:
    order: Order
    state: OrderState
    member: Optional[Member] = None
    subscription: Optional[Subscription] = None
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _find_collective(request: OrderRequest) -> Collective:
    if request.collective_id is not None:
        collective = db.session.get(Collective, request.collective_id)
        if collective is None:
            raise NotFound(f"No collective found with id: {request.collective_id}")
        return collective
    if request.collective_slug:
        collective = Collective.query.filter_by(slug=request.collective_slug.lower()).first()
        if collective is None:
            raise NotFound(f"No collective found with slug: {request.collective_slug}")
        return collective
    raise ValidationFailed("You need to specify the collective (id or slug) of this order")


def validate(actor: Optional[User], request: OrderRequest) -> tuple[Collective, Optional[Tier], int]:
    """Check every reference of *request* before anything is written.

    Returns ``(collective, tier, total_amount)``; raises
    :class:`errors.ErrorList` with every problem found.
    """
    try:
        collective = _find_collective(request)
    except PipelineError as e:
        raise ErrorList([e]) from e

    errors: list[PipelineError] = []
    if request.quantity is None or request.quantity < 1:
        errors.append(ValidationFailed("Quantity must be a positive integer"))

    tier = None
    if request.tier_id is not None:
        try:
            tier = capacity.find_tier_for_collective(collective, request.tier_id)
        except NotFound as e:
            errors.append(e)

    if tier is not None:
        amount = tier.amount * max(request.quantity or 0, 0)
    elif request.total_amount is not None:
        amount = request.total_amount
        if amount < 0:
            errors.append(ValidationFailed("Total amount must not be negative"))
    else:
        amount = 0

    errors.extend(
        membership.check_backing_request(actor, request.user, request.from_collective)
    )

    method = request.payment_method
    if amount > 0:
        if method is None:
            errors.append(ValidationFailed("This order requires a payment method"))
        elif not payments.is_supported(method.service):
            errors.append(ValidationFailed(f"Unsupported payment provider: {method.service}"))

    raise_if_any(errors)
    return collective, tier, amount


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def create_order(actor: Optional[User], request: OrderRequest) -> OrderResult:
    """Run a contribution request through the whole pipeline.

    Raises :class:`errors.ErrorList` for invalid requests,
    :class:`errors.CapacityExceeded` when the tier is sold out and
    :class:`errors.PaymentError` when the charge fails.  In all three cases
    nothing the request created is left in the database.
    """
    collective, tier, amount = validate(actor, request)

    try:
        identity = membership.resolve_backing_identity(
            actor, request.user, request.from_collective
        )
        order = Order(
            collective_id=collective.id,
            from_collective_id=identity.from_collective.id,
            created_by_user_id=identity.user.id,
            tier_id=tier.id if tier is not None else None,
            quantity=request.quantity,
            total_amount=amount,
            currency=(tier.currency if tier is not None else collective.currency)
            or membership.default_currency(),
            public_message=request.public_message,
        )
        capacity.reserve(order, collective)
        log_action(
            "order_created", "order", order.id,
            f"{order.quantity} x tier {order.tier_id} for {collective.slug}",
            user_id=identity.user.id,
        )
        db.session.commit()
    except PipelineError:
        db.session.rollback()
        raise

    logger.info(
        "Order %s created for %s by user %s (amount=%s %s)",
        order.id, collective.slug, identity.user.id, amount, order.currency,
    )
    result = OrderResult(order=order, state=OrderState.CREATED)

    if amount == 0:
        payments.mark_processed(order)
        db.session.commit()
    else:
        result.state = OrderState.PAYMENT_PENDING
        try:
            payments.execute(identity.user, order, request.payment_method)
        except PaymentError:
            order_id = order.id
            logger.warning("Order %s -> %s", order_id, OrderState.PAYMENT_FAILED.value)
            capacity.release(order)
            log_action("order_payment_failed", "order", order_id, user_id=identity.user.id)
            db.session.commit()
            raise
    result.state = OrderState.PROCESSED
    result.subscription = order.subscription

    try:
        result.member = membership.provision(order, tier)
        result.state = OrderState.MEMBER_PROVISIONED
    except Exception:
        db.session.rollback()
        logger.exception("Could not provision membership for order %s", order.id)
        result.warnings.append("The membership could not be created")
        return result

    try:
        _, warnings = activities.emit_order_activities(order, result.member, tier)
    except Exception:
        logger.exception("Could not notify subscribers of order %s", order.id)
        result.warnings.append("Notifications could not be sent")
        return result
    result.warnings.extend(warnings)
    if not warnings:
        result.state = OrderState.NOTIFIED
    return result


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def serialize_order(order: Order) -> dict:
    subscription = order.subscription
    return {
        "id": order.id,
        "collective": {"id": order.collective_id, "slug": order.collective.slug},
        "fromCollective": {
            "id": order.from_collective_id,
            "slug": order.from_collective.slug,
            "name": order.from_collective.name,
        },
        "createdByUserId": order.created_by_user_id,
        "tierId": order.tier_id,
        "quantity": order.quantity,
        "totalAmount": order.total_amount,
        "currency": order.currency,
        "publicMessage": order.public_message,
        "paymentProvider": order.payment_provider,
        "processedAt": order.processed_at.isoformat() if order.processed_at else None,
        "subscription": None if subscription is None else {
            "id": subscription.id,
            "amount": subscription.amount,
            "currency": subscription.currency,
            "interval": subscription.interval,
            "isActive": subscription.is_active,
        },
    }
