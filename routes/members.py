"""Membership management routes."""

from flask import Blueprint, jsonify, request

from errors import NotFound, ValidationFailed
from extensions import db
from models import Collective
from services.auth import get_current_user
from services.membership import add_member, list_members, remove_member, serialize_member
from utils import safe_int

members_bp = Blueprint("members", __name__)


def _collective_from_payload(payload: dict) -> Collective:
    ref = payload.get("collective") or {}
    collective_id = safe_int(ref.get("id"), default=None)
    if collective_id is None:
        raise ValidationFailed("You need to specify the collective id")
    collective = db.session.get(Collective, collective_id)
    if collective is None:
        raise NotFound(f"No collective found with id: {collective_id}")
    return collective


@members_bp.route("/collectives/<int:collective_id>/members")
def index(collective_id: int):
    collective = db.session.get(Collective, collective_id)
    if collective is None:
        raise NotFound(f"No collective found with id: {collective_id}")
    viewer = get_current_user()
    members = list_members(collective, request.args.get("role"))
    return jsonify([serialize_member(m, viewer) for m in members])


@members_bp.route("/members", methods=["POST"])
def create():
    """Add a member: ``{collective: {id}, member: {email?, name?}, role}``."""
    payload = request.get_json(silent=True) or {}
    collective = _collective_from_payload(payload)
    member_data = payload.get("member") or {}
    actor = get_current_user()
    member = add_member(
        actor,
        collective,
        payload.get("role", ""),
        email=member_data.get("email"),
        name=member_data.get("name"),
    )
    return jsonify(serialize_member(member, actor)), 201


@members_bp.route("/members", methods=["DELETE"])
def delete():
    """Remove a role: ``{collective: {id}, member: {id}, role}``.

    ``member.id`` is the id of the member's collective.
    """
    payload = request.get_json(silent=True) or {}
    collective = _collective_from_payload(payload)
    member_id = safe_int((payload.get("member") or {}).get("id"), default=None)
    if member_id is None:
        raise NotFound("Member not found")
    removed = remove_member(get_current_user(), collective, member_id, payload.get("role", ""))
    return jsonify({"removed": removed})
