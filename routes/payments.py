"""Payment redirect preparation and provider webhooks."""

import json

from flask import Blueprint, current_app, jsonify, request

from errors import CapacityExceeded, ValidationFailed
from extensions import csrf, limiter
from services import capacity, payments
from services.auth import get_current_user
from services.orders import OrderRequest, validate
from services.stripe_billing import handle_webhook

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/payments/prepare", methods=["POST"])
@limiter.limit("30 per minute")
def prepare():
    """Start a redirect payment (PayPal, GoPay) for a prospective order.

    Body: the order payload plus ``returnUrl`` and ``cancelUrl``.  The
    returned ``token`` goes into ``paymentMethod.token`` of the order once
    the payer is back.
    """
    payload = request.get_json(silent=True) or {}
    return_url = payload.get("returnUrl")
    cancel_url = payload.get("cancelUrl") or return_url
    if not return_url:
        raise ValidationFailed("A returnUrl is required")

    order_request = OrderRequest.from_payload(payload)
    collective, tier, amount = validate(get_current_user(), order_request)
    if amount <= 0:
        raise ValidationFailed("Free orders do not need a payment")
    if tier is not None:
        available = capacity.available_quantity(tier)
        if available is not None and order_request.quantity > available:
            raise CapacityExceeded(f"No more tickets left for {tier.name}")

    service = order_request.payment_method.service
    gateway = payments.get_gateway(service)
    currency = tier.currency if tier is not None else collective.currency
    prepared = gateway.prepare(collective, tier, amount, currency, return_url, cancel_url)
    return jsonify({
        "provider": service,
        "token": prepared.token,
        "redirectUrl": prepared.redirect_url,
    })


# ---------------------------------------------------------------------------
# Stripe webhook
# ---------------------------------------------------------------------------

@payments_bp.route("/webhooks/stripe", methods=["POST"])
@csrf.exempt
def webhook_stripe():
    """Handle Stripe webhook events."""
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature", "")
    result = handle_webhook(current_app.config["STRIPE_CONFIG"], payload, sig_header)
    if result:
        return json.dumps({"status": "ok"}), 200
    return json.dumps({"status": "error"}), 400
