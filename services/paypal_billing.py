"""PayPal REST integration (payments and billing agreements).

One-off: ``prepare`` creates a payment and returns the approval link; once
the payer approves, the order is submitted with ``token=<paymentId>`` and
``data={"payerId": ...}`` and the payment is executed here.

Recurring: ``prepare`` creates and activates a billing plan plus an agreement;
the order carries the approved agreement token, which is executed here.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

import requests

from config_models import PaypalConfig
from errors import PaymentError
from services.payments import ChargeResult, PaymentGateway, PreparedPayment
from utils import utc_now

logger = logging.getLogger(__name__)

_TIMEOUT = 20


def _money(amount: int) -> str:
    return f"{amount / 100:.2f}"


class PaypalGateway(PaymentGateway):
    name = "paypal"

    def __init__(self, config: PaypalConfig):
        self.config = config

    # -- transport ----------------------------------------------------------

    def _access_token(self) -> str:
        cfg = self.config
        if not cfg.enabled or not cfg.client_id or not cfg.client_secret:
            raise PaymentError("PayPal payments are not configured")
        try:
            resp = requests.post(
                f"{cfg.api_url}/v1/oauth2/token",
                auth=(cfg.client_id, cfg.client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=_TIMEOUT,
            )
            resp.raise_for_status()
            return resp.json()["access_token"]
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error("PayPal authentication failed: %s", e)
            raise PaymentError("Could not authenticate with PayPal") from e

    def _call(self, method: str, path: str, payload: Optional[object] = None) -> dict:
        token = self._access_token()
        try:
            resp = requests.request(
                method,
                f"{self.config.api_url}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error("PayPal %s %s failed: %s", method, path, e)
            raise PaymentError("PayPal is unreachable") from e
        if resp.status_code >= 400:
            logger.error("PayPal %s %s -> %s: %s", method, path, resp.status_code, resp.text)
            try:
                message = resp.json().get("message") or "PayPal rejected the request"
            except (ValueError, AttributeError):
                message = "PayPal rejected the request"
            raise PaymentError(message)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            logger.error("PayPal %s %s returned invalid JSON: %s", method, path, e)
            raise PaymentError("PayPal returned an invalid response") from e

    # -- settlement ---------------------------------------------------------

    def charge(self, actor, order, method) -> ChargeResult:
        payer_id = (method.data or {}).get("payerId")
        if not method.token or not payer_id:
            raise PaymentError("PayPal payments need a paymentId and a payerId")
        payment = self._call(
            "POST",
            f"/v1/payments/payment/{method.token}/execute",
            {"payer_id": payer_id},
        )
        if payment.get("state") != "approved":
            raise PaymentError(f"PayPal payment not approved (state: {payment.get('state')})")
        return ChargeResult(reference=payment.get("id", method.token), raw=payment)

    def charge_recurring(self, actor, order, method, subscription) -> ChargeResult:
        if not method.token:
            raise PaymentError("PayPal subscriptions need an approved agreement token")
        agreement = self._call(
            "POST", f"/v1/payments/billing-agreements/{method.token}/agreement-execute"
        )
        if agreement.get("state", "").lower() != "active":
            raise PaymentError(
                f"PayPal agreement not active (state: {agreement.get('state')})"
            )
        return ChargeResult(reference=agreement.get("id", method.token), raw=agreement)

    # -- redirect step ------------------------------------------------------

    def prepare(self, collective, tier, amount, currency, return_url, cancel_url) -> PreparedPayment:
        if tier is not None and tier.is_recurring:
            return self._prepare_agreement(collective, tier, amount, currency, return_url, cancel_url)

        payment = self._call("POST", "/v1/payments/payment", {
            "intent": "sale",
            "payer": {"payment_method": "paypal"},
            "redirect_urls": {"return_url": return_url, "cancel_url": cancel_url},
            "transactions": [{
                "amount": {"currency": currency, "total": _money(amount)},
                "description": f"Donation to {collective.name} ({currency} {_money(amount)})",
            }],
        })
        logger.info("Created PayPal payment %s for collective %s", payment.get("id"), collective.id)
        return PreparedPayment(token=payment.get("id", ""), redirect_url=_approval_url(payment))

    def _prepare_agreement(self, collective, tier, amount, currency, return_url, cancel_url):
        description = (
            f"donation of {currency} {_money(amount)} / {tier.interval} to {collective.name}"
        )
        plan = self._call("POST", "/v1/payments/billing-plans", {
            "name": f"Plan for {description}",
            "description": description,
            "type": "INFINITE",
            "merchant_preferences": {"return_url": return_url, "cancel_url": cancel_url},
            "payment_definitions": [{
                "name": "Regular payment",
                "type": "REGULAR",
                "frequency": tier.interval.upper(),
                "frequency_interval": "1",
                "cycles": "0",
                "amount": {"currency": currency, "value": _money(amount)},
            }],
        })
        plan_id = plan.get("id")
        if not plan_id:
            raise PaymentError("PayPal did not return a billing plan")
        self._call(
            "PATCH",
            f"/v1/payments/billing-plans/{plan_id}",
            [{"op": "replace", "path": "/", "value": {"state": "ACTIVE"}}],
        )
        start = (utc_now() + datetime.timedelta(minutes=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
        agreement = self._call("POST", "/v1/payments/billing-agreements", {
            "name": f"Agreement for {description}",
            "description": description,
            "start_date": start,
            "plan": {"id": plan_id},
            "payer": {"payment_method": "paypal"},
        })
        approval_url = _approval_url(agreement)
        logger.info("Created PayPal billing plan %s for collective %s", plan_id, collective.id)
        # The agreement token travels in the approval link as ?token=...
        token = approval_url.split("token=", 1)[1].split("&")[0] if "token=" in approval_url else ""
        return PreparedPayment(token=token, redirect_url=approval_url)


def _approval_url(resource: dict) -> str:
    for link in resource.get("links", []):
        if link.get("rel") == "approval_url":
            return link.get("href", "")
    raise PaymentError("PayPal did not return an approval link")
