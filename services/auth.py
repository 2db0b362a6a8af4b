"""Actor resolution and collective-relationship checks."""

from __future__ import annotations

import logging
from functools import wraps
from typing import Optional

from flask import g, has_request_context, jsonify

from models import EDITOR_ROLES, Collective, Member, User

logger = logging.getLogger(__name__)


def get_current_user() -> Optional[User]:
    """Return the currently logged-in user from ``flask.g``."""
    if not has_request_context():
        return None
    return getattr(g, "current_user", None)


def login_required(f):
    """Decorator that answers 401 if no user is attached to the request."""

    @wraps(f)
    def decorated(*args, **kwargs):
        if not get_current_user():
            return jsonify({"errors": [{
                "kind": "Unauthorized",
                "message": "You need to be logged in",
            }]}), 401
        return f(*args, **kwargs)

    return decorated


def user_roles(user: Optional[User], collective_id: int) -> set[str]:
    """Roles held by *user*'s personal collective on *collective_id*."""
    if not user:
        return set()
    rows = Member.query.filter_by(
        collective_id=collective_id, member_collective_id=user.collective_id
    ).all()
    return {m.role for m in rows}


def can_edit_collective(user: Optional[User], collective: Collective) -> bool:
    """ADMIN/HOST of the collective, or of an event's parent collective."""
    if not user:
        return False
    if user.collective_id == collective.id:
        return True
    if user_roles(user, collective.id) & EDITOR_ROLES:
        return True
    if collective.is_event and collective.parent_collective_id:
        return bool(user_roles(user, collective.parent_collective_id) & EDITOR_ROLES)
    return False
