"""GoPay payment gateway integration service.

GoPay payments are created up front (:meth:`GopayGateway.prepare`), the payer
completes them on the GoPay gateway page, and the returned payment id is then
submitted with the order as the payment method token.  Settlement verifies
the payment state through the GoPay API.
"""

from __future__ import annotations

import logging
from typing import Optional

import gopay

from config_models import GopayConfig
from errors import PaymentError
from services.payments import ChargeResult, PaymentGateway, PreparedPayment

logger = logging.getLogger(__name__)

_RECURRENCE_CYCLES = {"month": "MONTH", "year": "MONTH"}
_RECURRENCE_PERIODS = {"month": 1, "year": 12}


class GopayGateway(PaymentGateway):
    name = "gopay"

    def __init__(self, config: GopayConfig):
        self.config = config

    def _get_client(self):
        """Create and return a configured GoPay payments client."""
        cfg = self.config
        if not cfg.enabled or not cfg.goid or not cfg.client_id or not cfg.client_secret:
            raise PaymentError("GoPay payments are not configured")
        is_production = "gate.gopay.cz" in cfg.gateway_url
        return gopay.payments(
            {
                "goid": cfg.goid,
                "clientId": cfg.client_id,
                "clientSecret": cfg.client_secret,
                "isProductionMode": is_production,
            }
        )

    def get_payment_status(self, gopay_payment_id) -> dict:
        """Fetch the payment status; ``state`` is PAID, CANCELED, TIMEOUTED, ..."""
        client = self._get_client()
        try:
            payment_id = int(gopay_payment_id)
        except (TypeError, ValueError):
            raise PaymentError(f"Invalid GoPay payment id: {gopay_payment_id}")
        try:
            response = client.get_status(payment_id)
            succeeded = response.has_succeed()
        except Exception as e:
            logger.error("GoPay get_status error for %s: %s", gopay_payment_id, e)
            raise PaymentError("GoPay is unreachable") from e
        if not succeeded:
            logger.error("GoPay get_status failed for %s: %s", gopay_payment_id, response.json)
            raise PaymentError("GoPay payment status is unavailable")
        return response.json

    def _verify_paid(self, order, method) -> dict:
        status = self.get_payment_status(method.token)
        state = status.get("state", "")
        if state != "PAID":
            logger.info("GoPay payment %s for order %s is %s", method.token, order.id, state)
            raise PaymentError(f"GoPay payment is not paid (state: {state or 'unknown'})")
        try:
            paid_amount = int(status.get("amount", -1))
        except (TypeError, ValueError):
            paid_amount = -1
        if paid_amount != order.total_amount:
            raise PaymentError("GoPay payment amount does not match the order")
        return status

    def charge(self, actor, order, method) -> ChargeResult:
        status = self._verify_paid(order, method)
        return ChargeResult(reference=str(status.get("id", method.token)), raw=status)

    def charge_recurring(self, actor, order, method, subscription) -> ChargeResult:
        status = self._verify_paid(order, method)
        recurrence = status.get("recurrence") or {}
        if recurrence.get("recurrence_state") not in ("REQUESTED", "STARTED"):
            raise PaymentError("GoPay payment has no active recurrence")
        return ChargeResult(reference=str(status.get("id", method.token)), raw=status)

    def prepare(
        self,
        collective,
        tier,
        amount: int,
        currency: str,
        return_url: str,
        cancel_url: str,
    ) -> PreparedPayment:
        """Create a GoPay payment for the payer to complete on the gateway page."""
        client = self._get_client()
        description = f"Contribution to {collective.name}"
        if tier is not None:
            description = f"{tier.name} ({collective.name})"

        request = {
            "payer": {
                "default_payment_instrument": gopay.enums.PaymentInstrument.PAYMENT_CARD,
                "allowed_payment_instruments": [
                    gopay.enums.PaymentInstrument.PAYMENT_CARD,
                    gopay.enums.PaymentInstrument.BANK_ACCOUNT,
                    gopay.enums.PaymentInstrument.APPLE_PAY,
                    gopay.enums.PaymentInstrument.GPAY,
                ],
            },
            "amount": amount,
            "currency": currency.upper(),
            "order_number": f"C{collective.id}-T{tier.id if tier else 0}",
            "order_description": description,
            "items": [{"type": "ITEM", "name": description, "amount": amount, "count": 1}],
            "callback": {"return_url": return_url, "notification_url": return_url},
        }
        recurrence = _recurrence_for(tier)
        if recurrence:
            request["recurrence"] = recurrence

        try:
            response = client.create_payment(request)
            if not response.has_succeed():
                logger.error(
                    "GoPay create_payment failed for collective %s: %s", collective.id, response.json
                )
                raise PaymentError("Could not create GoPay payment")
            payment_id = response.json["id"]
            gw_url = response.json.get("gw_url", "")
        except PaymentError:
            raise
        except Exception as e:
            logger.error("GoPay create_payment error for collective %s: %s", collective.id, e)
            raise PaymentError("Could not create GoPay payment") from e
        logger.info(
            "Created GoPay payment %s for collective %s (amount=%s)",
            payment_id, collective.id, amount,
        )
        return PreparedPayment(token=str(payment_id), redirect_url=gw_url)


def _recurrence_for(tier) -> Optional[dict]:
    if tier is None or not tier.is_recurring:
        return None
    return {
        "recurrence_cycle": _RECURRENCE_CYCLES[tier.interval],
        "recurrence_period": _RECURRENCE_PERIODS[tier.interval],
        "recurrence_date_to": "2099-12-31",
    }
