"""Subscriber resolution and notification opt-outs.

Everybody holding a role on a collective is subscribed by default.  A
Notification row with ``active=False`` opts one user out of one key on one
collective, where the key is either an activity type or a mailing list
(``mailinglist`` for the collective's default list, ``mailinglist.<channel>``
for a role-based one).
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError

from errors import NotFound, ValidationFailed
from extensions import db
from models import (
    DEFAULT_NOTIFICATION_CHANNEL,
    EDITOR_ROLES,
    MAILING_LIST,
    ROLE_ADMIN,
    ROLE_ATTENDEE,
    ROLE_BACKER,
    ROLE_FOLLOWER,
    ROLE_HOST,
    Collective,
    Member,
    Notification,
    User,
)

logger = logging.getLogger(__name__)

# Role-based mailing lists.  The default list (no channel) reaches every role.
CHANNEL_ROLES = {
    "backers": {ROLE_BACKER},
    "attendees": {ROLE_ATTENDEE},
    "followers": {ROLE_FOLLOWER},
    "admins": {ROLE_ADMIN},
    "hosts": {ROLE_HOST},
}


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def _channel_name(channel: Optional[str]) -> Optional[str]:
    if not channel or channel == MAILING_LIST:
        return None
    if channel.startswith(MAILING_LIST + "."):
        channel = channel[len(MAILING_LIST) + 1:]
    if channel not in CHANNEL_ROLES:
        raise ValidationFailed(f"Unknown mailing list: {channel}")
    return channel


def mailinglist_type(channel: Optional[str]) -> str:
    """Notification type under which opt-outs of *channel* are stored."""
    name = _channel_name(channel)
    return MAILING_LIST if name is None else f"{MAILING_LIST}.{name}"


def roles_for_channel(channel: Optional[str]) -> Optional[set[str]]:
    """Roles reached by *channel*; ``None`` means every role."""
    name = _channel_name(channel)
    return None if name is None else CHANNEL_ROLES[name]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

def _collective_by_slug(slug: str) -> Collective:
    collective = Collective.query.filter_by(slug=(slug or "").lower()).first()
    if not collective:
        raise NotFound(f"No collective found with slug: {slug}")
    return collective


def _member_collective_ids(collective: Collective, roles: Optional[set[str]]) -> set[int]:
    query = Member.query.filter(Member.collective_id == collective.id)
    if roles is not None:
        query = query.filter(Member.role.in_(roles))
    ids = {m.member_collective_id for m in query}

    # An event's default list also reaches whoever runs the parent collective.
    if roles is None and collective.is_event and collective.parent_collective_id:
        parent_editors = Member.query.filter(
            Member.collective_id == collective.parent_collective_id,
            Member.role.in_(EDITOR_ROLES),
        )
        ids.update(m.member_collective_id for m in parent_editors)
    return ids


def get_subscribers(
    collective_slug: str,
    channel: Optional[str] = None,
    activity_type: Optional[str] = None,
) -> list[User]:
    """Users reached by *channel* of the collective, minus those who opted out.

    Members that are organizations have no user of their own and are
    skipped.  When *activity_type* is given, users who opted out of that
    activity on the collective are excluded as well.
    """
    collective = _collective_by_slug(collective_slug)
    list_type = mailinglist_type(channel)
    member_ids = _member_collective_ids(collective, roles_for_channel(channel))
    if not member_ids:
        return []

    users = User.query.filter(User.collective_id.in_(member_ids)).order_by(User.id).all()
    if not users:
        return []

    opt_out_types = [list_type]
    if activity_type:
        opt_out_types.append(activity_type)
    opted_out = {
        row.user_id
        for row in Notification.query.filter(
            Notification.collective_id == collective.id,
            Notification.channel == DEFAULT_NOTIFICATION_CHANNEL,
            Notification.type.in_(opt_out_types),
            Notification.active.is_(False),
            Notification.user_id.in_([u.id for u in users]),
        )
    }
    return [u for u in users if u.id not in opted_out]


def resolve(
    collective_slug: str,
    channel: Optional[str] = None,
    activity_type: Optional[str] = None,
) -> set[int]:
    """Ids of the users :func:`get_subscribers` returns."""
    return {u.id for u in get_subscribers(collective_slug, channel, activity_type)}


# ---------------------------------------------------------------------------
# Opt-out / opt-in
# ---------------------------------------------------------------------------

def _set_active(user_id: int, collective_id: int, type_: str, active: bool,
                channel: str = DEFAULT_NOTIFICATION_CHANNEL) -> Optional[Notification]:
    key = dict(user_id=user_id, collective_id=collective_id, type=type_, channel=channel)
    row = Notification.query.filter_by(**key).first()
    if row is None:
        if active:
            # No row already means subscribed.
            return None
        row = Notification(active=False, **key)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race with an identical opt-out; update the winner's row.
            db.session.rollback()
            row = Notification.query.filter_by(**key).one()
        else:
            logger.info("User %s unsubscribed from %s on collective %s", user_id, type_, collective_id)
            return row

    if row.active != active:
        row.active = active
        db.session.commit()
        logger.info(
            "User %s %s %s on collective %s",
            user_id, "subscribed to" if active else "unsubscribed from", type_, collective_id,
        )
    return row


def unsubscribe(user_id: int, collective_id: int, type_: str,
                channel: str = DEFAULT_NOTIFICATION_CHANNEL) -> Notification:
    """Opt *user_id* out of *type_* on the collective.  Idempotent."""
    return _set_active(user_id, collective_id, type_, False, channel)


def subscribe(user_id: int, collective_id: int, type_: str,
              channel: str = DEFAULT_NOTIFICATION_CHANNEL) -> Optional[Notification]:
    """Revert an opt-out.  Idempotent; a no-op when never unsubscribed."""
    return _set_active(user_id, collective_id, type_, True, channel)


def is_subscribed(user_id: int, collective_id: int, type_: str,
                  channel: str = DEFAULT_NOTIFICATION_CHANNEL) -> bool:
    row = Notification.query.filter_by(
        user_id=user_id, collective_id=collective_id, type=type_, channel=channel
    ).first()
    return row is None or row.active


def count_active(user_id: int, collective_id: int, type_: str) -> int:
    """Number of active notification rows for the key (0 once opted out)."""
    return Notification.query.filter_by(
        user_id=user_id, collective_id=collective_id, type=type_, active=True
    ).count()
