"""Notification opt-out / opt-in routes for the logged-in user."""

from flask import Blueprint, jsonify

from errors import NotFound, ValidationFailed
from extensions import db
from models import ACTIVITY_TYPES, Collective
from services import notifications
from services.auth import get_current_user, login_required

notifications_bp = Blueprint("notifications", __name__)


def _get_collective(collective_id: int) -> Collective:
    collective = db.session.get(Collective, collective_id)
    if collective is None:
        raise NotFound(f"No collective found with id: {collective_id}")
    return collective


def _check_activity(activity_type: str) -> None:
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationFailed(f"Unknown activity type: {activity_type}")


def _state(user_id: int, collective: Collective, type_: str) -> dict:
    return {
        "collective": {"id": collective.id, "slug": collective.slug},
        "type": type_,
        "active": notifications.is_subscribed(user_id, collective.id, type_),
    }


@notifications_bp.route(
    "/collectives/<int:collective_id>/activities/<activity_type>/unsubscribe",
    methods=["POST"],
)
@login_required
def unsubscribe_activity(collective_id: int, activity_type: str):
    _check_activity(activity_type)
    collective = _get_collective(collective_id)
    user = get_current_user()
    notifications.unsubscribe(user.id, collective.id, activity_type)
    return jsonify(_state(user.id, collective, activity_type))


@notifications_bp.route(
    "/collectives/<int:collective_id>/activities/<activity_type>/subscribe",
    methods=["POST"],
)
@login_required
def subscribe_activity(collective_id: int, activity_type: str):
    _check_activity(activity_type)
    collective = _get_collective(collective_id)
    user = get_current_user()
    notifications.subscribe(user.id, collective.id, activity_type)
    return jsonify(_state(user.id, collective, activity_type))


@notifications_bp.route(
    "/collectives/<int:collective_id>/mailinglists/<channel>/unsubscribe",
    methods=["POST"],
)
@login_required
def unsubscribe_mailinglist(collective_id: int, channel: str):
    collective = _get_collective(collective_id)
    type_ = notifications.mailinglist_type(channel)
    user = get_current_user()
    notifications.unsubscribe(user.id, collective.id, type_)
    return jsonify(_state(user.id, collective, type_))


@notifications_bp.route(
    "/collectives/<int:collective_id>/mailinglists/<channel>/subscribe",
    methods=["POST"],
)
@login_required
def subscribe_mailinglist(collective_id: int, channel: str):
    collective = _get_collective(collective_id)
    type_ = notifications.mailinglist_type(channel)
    user = get_current_user()
    notifications.subscribe(user.id, collective.id, type_)
    return jsonify(_state(user.id, collective, type_))
