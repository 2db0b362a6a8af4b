"""Audit logging service."""

from __future__ import annotations

from typing import Optional

from extensions import db
from models import AuditLog


def log_action(
    action: str,
    entity_type: str,
    entity_id: Optional[int],
    details: str = "",
    *,
    user_id: Optional[int] = None,
) -> None:
    """Record an audit log entry.

    NOTE: This does NOT commit — the caller is responsible for committing
    the session so the entry lands in the same unit of work as the change.
    """
    if user_id is None:
        from services.auth import get_current_user

        user = get_current_user()
        user_id = user.id if user else None
    db.session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
    )
