"""Outcome events and their fan-out to the notifier."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from flask import current_app

from mailer import MailerError
from models import (
    ACTIVITY_MEMBER_CREATED,
    ACTIVITY_TICKET_CONFIRMED,
    ACTIVITY_TRANSACTION_CREATED,
    Collective,
    Member,
    Order,
    Tier,
    User,
)
from services import notifications
from utils import format_amount

logger = logging.getLogger(__name__)

# Mailing list each activity goes to when no explicit recipients are given.
ACTIVITY_CHANNELS = {
    ACTIVITY_MEMBER_CREATED: "admins",
    ACTIVITY_TRANSACTION_CREATED: "hosts",
}


class DispatchError(Exception):
    """Some recipients of an activity could not be notified."""

    def __init__(self, activity_type: str, failed: list[int], dispatched: int):
        super().__init__(f"{len(failed)} notification(s) for {activity_type} failed")
        self.activity_type = activity_type
        self.failed = failed
        self.dispatched = dispatched


def get_notifier():
    return current_app.config["NOTIFIER"]


def _collective_summary(collective: Collective) -> dict:
    return {
        "id": collective.id,
        "slug": collective.slug,
        "name": collective.name,
        "type": collective.kind,
        "twitterHandle": collective.twitter_handle,
    }


def build_payload(
    collective: Collective,
    order: Optional[Order],
    member: Optional[Member],
    tier: Optional[Tier] = None,
) -> dict:
    payload = {"collective": _collective_summary(collective), "member": None,
               "order": None, "tier": None, "user": None}

    if member is not None:
        payload["member"] = {
            "id": member.id,
            "role": member.role,
            "memberCollective": _collective_summary(member.member_collective),
        }

    if order is not None:
        subscription = order.subscription
        payload["order"] = {
            "id": order.id,
            "quantity": order.quantity,
            "totalAmount": order.total_amount,
            "currency": order.currency,
            "totalAmountFormatted": format_amount(order.total_amount, order.currency),
            "publicMessage": order.public_message,
            "subscription": {"interval": subscription.interval} if subscription else None,
        }
        user = order.created_by_user
        if user is not None:
            payload["user"] = {"id": user.id, "name": user.name}
        tier = tier or order.tier

    if tier is not None:
        payload["tier"] = {"id": tier.id, "name": tier.name, "kind": tier.kind}
    return payload


def emit(
    activity_type: str,
    collective: Collective,
    order: Optional[Order],
    member: Optional[Member],
    *,
    recipients: Optional[Iterable[User]] = None,
) -> int:
    """Hand the activity to the notifier once per recipient.

    Without explicit *recipients* the audience is the activity's mailing list
    on *collective*, minus opt-outs of the list or of the activity type.
    Returns the number of recipients the notifier accepted; raises
    :class:`DispatchError` after trying everyone if some sends failed.
    """
    if recipients is None:
        recipients = notifications.get_subscribers(
            collective.slug, ACTIVITY_CHANNELS.get(activity_type), activity_type
        )

    payload = build_payload(collective, order, member)
    notifier = get_notifier()
    seen: set[int] = set()
    failed: list[int] = []
    dispatched = 0
    for user in recipients:
        if user.id in seen:
            continue
        seen.add(user.id)
        try:
            notifier.send(activity_type, user, payload)
        except MailerError as e:
            logger.error(
                "Could not notify user %s <%s> of %s: %s", user.id, user.email, activity_type, e
            )
            failed.append(user.id)
            continue
        except Exception:
            logger.exception(
                "Notifier failed for user %s <%s> on %s", user.id, user.email, activity_type
            )
            failed.append(user.id)
            continue
        dispatched += 1

    logger.info(
        "Activity %s on %s dispatched to %s recipient(s)",
        activity_type, collective.slug, dispatched,
    )
    if failed:
        raise DispatchError(activity_type, failed, dispatched)
    return dispatched


def emit_order_activities(order: Order, member: Member, tier: Optional[Tier]) -> tuple[int, list[str]]:
    """Emit every activity a processed order produces.

    Each activity is independent: a failure is logged, reported in the
    returned warnings and does not stop the others.
    """
    collective = member.collective
    planned = []
    if tier is not None and tier.kind == "TICKET" and order.created_by_user is not None:
        buyer = order.created_by_user
        if notifications.is_subscribed(buyer.id, collective.id, ACTIVITY_TICKET_CONFIRMED):
            planned.append((ACTIVITY_TICKET_CONFIRMED, [buyer]))
    if order.total_amount > 0:
        planned.append((ACTIVITY_TRANSACTION_CREATED, None))
    planned.append((ACTIVITY_MEMBER_CREATED, None))

    total = 0
    warnings: list[str] = []
    for activity_type, recipients in planned:
        try:
            total += emit(activity_type, collective, order, member, recipients=recipients)
        except DispatchError as e:
            total += e.dispatched
            warnings.append(str(e))
        except Exception:
            logger.exception("Failed to emit %s for order %s", activity_type, order.id)
            warnings.append(f"Notification {activity_type} could not be sent")
    return total, warnings
