"""Authentication routes (JSON session login)."""

import re

from flask import Blueprint, jsonify, request, session
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash, generate_password_hash

from errors import Unauthorized, ValidationFailed
from extensions import db, limiter
from models import User
from services.audit import log_action
from services.auth import get_current_user
from services.membership import find_or_create_user, find_user_by_email


def _validate_password(password: str) -> str | None:
    """Return error message if password is weak, else None."""
    if len(password) < 8:
        return "The password must be at least 8 characters long"
    if not re.search(r"[A-Z]", password):
        return "The password must contain an uppercase letter"
    if not re.search(r"[a-z]", password):
        return "The password must contain a lowercase letter"
    if not re.search(r"\d", password):
        return "The password must contain a digit"
    return None


auth_bp = Blueprint("auth", __name__)


def _serialize_session_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "collective": {"id": user.collective_id, "slug": user.collective.slug},
    }


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    data = request.get_json(silent=True) or {}
    user = find_user_by_email(data.get("email", ""))
    password = data.get("password", "")
    # Users provisioned from an order have no password and cannot log in.
    if (
        user
        and user.is_active
        and user.password_hash
        and check_password_hash(user.password_hash, password)
    ):
        session.clear()
        session["user_id"] = user.id
        session.permanent = True
        log_action("login", "user", user.id, "user logged in", user_id=user.id)
        db.session.commit()
        return jsonify(_serialize_session_user(user))
    raise Unauthorized("Invalid email or password")


@auth_bp.route("/logout", methods=["POST"])
def logout():
    user = get_current_user()
    if user:
        log_action("logout", "user", user.id, "user logged out")
        db.session.commit()
    session.clear()
    return jsonify({"status": "ok"})


@auth_bp.route("/register", methods=["POST"])
@limiter.limit("5 per minute")
def register():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    name = (data.get("name") or "").strip() or None
    password = data.get("password", "")

    if not email or "@" not in email:
        raise ValidationFailed("A valid email address is required")
    pw_error = _validate_password(password)
    if pw_error:
        raise ValidationFailed(pw_error)

    if find_user_by_email(email) is not None:
        raise ValidationFailed("A user with this email already exists")

    user, _ = find_or_create_user(email, name)
    user.password_hash = generate_password_hash(password)
    db.session.flush()
    log_action("register", "user", user.id, email, user_id=user.id)
    db.session.commit()

    session.clear()
    session["user_id"] = user.id
    return jsonify(_serialize_session_user(user)), 201


@auth_bp.route("/csrf-token")
def csrf_token():
    """Token to send back as ``X-CSRFToken`` on state-changing requests."""
    return jsonify({"csrfToken": generate_csrf()})
