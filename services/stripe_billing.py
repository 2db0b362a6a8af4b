"""Stripe payment integration service."""

from __future__ import annotations

import logging

import stripe

from config_models import StripeConfig
from errors import PaymentError
from services import subscriptions
from services.payments import ChargeResult, PaymentGateway

logger = logging.getLogger(__name__)

# Subscription states in which the first period has been paid (or is free).
_LIVE_SUBSCRIPTION_STATES = {"active", "trialing"}


class StripeGateway(PaymentGateway):
    """Card payments: one-off PaymentIntents and recurring Subscriptions."""

    name = "stripe"

    def __init__(self, config: StripeConfig):
        self.config = config

    def _get_stripe(self):
        if not self.config.enabled or not self.config.secret_key:
            raise PaymentError("Stripe payments are not configured")
        stripe.api_key = self.config.secret_key
        return stripe

    def charge(self, actor, order, method) -> ChargeResult:
        client = self._get_stripe()
        if not method.token:
            raise PaymentError("Missing card token")
        try:
            intent = client.PaymentIntent.create(
                amount=order.total_amount,
                currency=order.currency.lower(),
                payment_method_data={"type": "card", "card": {"token": method.token}},
                confirm=True,
                receipt_email=actor.email,
                description=f"Contribution to {order.collective.name}",
                metadata={
                    "order_id": str(order.id),
                    "collective_id": str(order.collective_id),
                },
            )
        except stripe.StripeError as e:
            logger.error("Stripe charge failed for order %s: %s", order.id, e)
            raise PaymentError(e.user_message or str(e)) from e

        if intent.status != "succeeded":
            logger.warning("Stripe PaymentIntent %s ended in %s", intent.id, intent.status)
            raise PaymentError(f"Card payment not completed (status: {intent.status})")
        return ChargeResult(reference=intent.id, raw={"status": intent.status})

    def charge_recurring(self, actor, order, method, subscription) -> ChargeResult:
        client = self._get_stripe()
        if not method.token:
            raise PaymentError("Missing card token")
        try:
            customer = client.Customer.create(
                email=actor.email,
                name=actor.name,
                source=method.token,
                metadata={"user_id": str(actor.id)},
            )
            stripe_sub = client.Subscription.create(
                customer=customer.id,
                items=[{
                    "price_data": {
                        "currency": subscription.currency.lower(),
                        "unit_amount": subscription.amount,
                        "recurring": {"interval": subscription.interval},
                        "product_data": {
                            "name": f"{order.collective.name} ({order.tier.name})",
                        },
                    },
                    "quantity": order.quantity,
                }],
                metadata={
                    "order_id": str(order.id),
                    "subscription_id": str(subscription.id),
                },
            )
        except stripe.StripeError as e:
            logger.error("Stripe subscription failed for order %s: %s", order.id, e)
            raise PaymentError(e.user_message or str(e)) from e

        if stripe_sub.status not in _LIVE_SUBSCRIPTION_STATES:
            logger.warning("Stripe subscription %s is %s", stripe_sub.id, stripe_sub.status)
            raise PaymentError(f"Subscription payment not completed (status: {stripe_sub.status})")
        return ChargeResult(
            reference=stripe_sub.id,
            raw={"customer": customer.id, "status": stripe_sub.status},
        )


def handle_webhook(config: StripeConfig, payload: bytes, sig_header: str) -> bool:
    """Process a Stripe webhook event.  Returns True if the event was accepted.

    Ending or unpaid Stripe subscriptions deactivate the matching local
    Subscription; the order and membership stay as they are.
    """
    if not config.webhook_secret:
        logger.warning("STRIPE_WEBHOOK_SECRET not configured")
        return False

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, config.webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.error("Stripe webhook verification failed: %s", e)
        return False

    event_type = event["type"]
    data = event["data"]["object"]

    if event_type == "customer.subscription.deleted":
        reference = data.get("id")
    elif event_type == "invoice.payment_failed":
        reference = data.get("subscription")
    else:
        logger.debug("Ignoring Stripe event %s", event_type)
        return True

    sub = subscriptions.find_by_gateway_reference(reference) if reference else None
    if sub is None:
        logger.warning("Stripe %s for unknown subscription %s", event_type, reference)
        return True
    subscriptions.deactivate(sub, reason=event_type)
    return True
