"""Payment execution over pluggable gateways.

The executor knows two capabilities, a one-off charge and a recurring
charge, and picks the gateway from the registry stored in
``app.config["PAYMENT_GATEWAYS"]`` by the payment method's ``service``.
Nothing else in the pipeline looks at the provider name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from flask import current_app

from errors import PaymentError, ValidationFailed
from extensions import db
from models import Collective, Order, Subscription, Tier, User
from services import subscriptions
from services.audit import log_action
from utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "stripe"


@dataclass
class PaymentMethod:
    """Payment method descriptor as supplied by the caller."""
    token: str
    service: str = DEFAULT_PROVIDER
    name: Optional[str] = None
    data: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> Optional["PaymentMethod"]:
        if not raw:
            return None
        return cls(
            token=str(raw.get("token") or ""),
            service=(raw.get("service") or DEFAULT_PROVIDER).lower(),
            name=raw.get("name"),
            data=raw.get("data") or {},
        )


@dataclass
class ChargeResult:
    reference: str
    raw: dict = field(default_factory=dict)


@dataclass
class PreparedPayment:
    """Redirect step of wallet providers: where to send the payer."""
    token: str
    redirect_url: str


class PaymentGateway:
    """Interface every provider implements.

    ``charge`` and ``charge_recurring`` must raise :class:`PaymentError` on a
    decline, a timeout or any transport failure.
    """

    name = ""

    def charge(self, actor: User, order: Order, method: PaymentMethod) -> ChargeResult:
        raise NotImplementedError

    def charge_recurring(
        self,
        actor: User,
        order: Order,
        method: PaymentMethod,
        subscription: Subscription,
    ) -> ChargeResult:
        raise NotImplementedError

    def prepare(
        self,
        collective: Collective,
        tier: Optional[Tier],
        amount: int,
        currency: str,
        return_url: str,
        cancel_url: str,
    ) -> PreparedPayment:
        raise ValidationFailed(f"{self.name} does not use a redirect flow")


def build_gateways(loaded_config) -> dict[str, PaymentGateway]:
    """Instantiate the configured providers, keyed by service name."""
    from services.gopay_billing import GopayGateway
    from services.paypal_billing import PaypalGateway
    from services.stripe_billing import StripeGateway

    return {
        "stripe": StripeGateway(loaded_config.stripe),
        "paypal": PaypalGateway(loaded_config.paypal),
        "gopay": GopayGateway(loaded_config.gopay),
    }


def _registry() -> dict[str, PaymentGateway]:
    return current_app.config.get("PAYMENT_GATEWAYS") or {}


def is_supported(service: Optional[str]) -> bool:
    return bool(service) and service in _registry()


def get_gateway(service: str) -> PaymentGateway:
    gateway = _registry().get(service)
    if gateway is None:
        raise PaymentError(f"Unsupported payment provider: {service}")
    return gateway


def mark_processed(order: Order, subscription: Optional[Subscription] = None) -> None:
    """Stamp *order* as processed.  Does NOT commit."""
    order.processed_at = utc_now()
    if subscription is not None:
        order.subscription_id = subscription.id


def execute(actor: User, order: Order, method: PaymentMethod) -> Order:
    """Settle *order* through the gateway of *method*.

    For recurring tiers the Subscription snapshot is written (and committed)
    before the gateway is called, so no transaction stays open during the
    round-trip.  On a decline the snapshot is removed again and the
    :class:`PaymentError` propagates; any other gateway failure is raised as
    a :class:`PaymentError` too.  Releasing the order's capacity is up to
    the caller.
    """
    gateway = get_gateway(method.service)
    tier = order.tier

    subscription = None
    if tier is not None and tier.is_recurring:
        subscription = subscriptions.create_from_tier(tier)
        db.session.commit()

    try:
        if subscription is not None:
            result = gateway.charge_recurring(actor, order, method, subscription)
        else:
            result = gateway.charge(actor, order, method)
    except Exception as e:
        if isinstance(e, PaymentError):
            logger.warning(
                "Payment for order %s declined by %s: %s", order.id, method.service, e.message
            )
            error = e
        else:
            logger.exception("Gateway %s failed for order %s", method.service, order.id)
            error = PaymentError(f"The {method.service} payment could not be completed")
        db.session.rollback()
        if subscription is not None:
            db.session.delete(subscription)
            db.session.commit()
        if error is e:
            raise
        raise error from e

    if subscription is not None:
        subscriptions.attach_gateway_reference(subscription, result.reference)
    order.payment_provider = method.service
    order.gateway_reference = result.reference
    mark_processed(order, subscription)
    log_action(
        "order_processed",
        "order",
        order.id,
        f"{method.service} {result.reference}",
        user_id=order.created_by_user_id,
    )
    db.session.commit()
    logger.info(
        "Order %s settled via %s (reference=%s, subscription=%s)",
        order.id, method.service, result.reference, order.subscription_id,
    )
    return order
