"""Tier routes: stats and money/capacity edits."""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from errors import NotFound, Unauthorized, ValidationFailed, raise_if_any
from extensions import db
from models import RECURRING_INTERVALS, TIER_KINDS, Collective, Tier
from services.audit import log_action
from services.auth import can_edit_collective, get_current_user, login_required
from services.capacity import ordered_quantity, tier_stats
from utils import safe_int

logger = logging.getLogger(__name__)

tiers_bp = Blueprint("tiers", __name__)


def serialize_tier(tier: Tier) -> dict:
    return {
        "id": tier.id,
        "collectiveId": tier.collective_id,
        "name": tier.name,
        "description": tier.description,
        "type": tier.kind,
        "amount": tier.amount,
        "currency": tier.currency,
        "interval": tier.interval,
        "maxQuantity": tier.max_quantity,
        "goal": tier.goal,
        "stats": tier_stats(tier),
    }


@tiers_bp.route("/tiers/<int:tier_id>")
def detail(tier_id: int):
    tier = db.session.get(Tier, tier_id)
    if tier is None:
        raise NotFound(f"No tier found with id: {tier_id}")
    return jsonify(serialize_tier(tier))


@tiers_bp.route("/collectives/<int:collective_id>/tiers")
def list_tiers(collective_id: int):
    collective = db.session.get(Collective, collective_id)
    if collective is None:
        raise NotFound(f"No collective found with id: {collective_id}")
    tiers = Tier.query.filter_by(collective_id=collective.id).order_by(Tier.id).all()
    return jsonify([serialize_tier(t) for t in tiers])


def _apply_tier_data(tier: Tier, data: dict, errors: list) -> None:
    label = data.get("name") or tier.name or f"#{data.get('id')}"

    if "name" in data:
        tier.name = (data.get("name") or "").strip()
    if not tier.name:
        errors.append(ValidationFailed("A tier needs a name"))
    if "description" in data:
        tier.description = data.get("description")
    if "type" in data:
        kind = (data.get("type") or "").upper()
        if kind not in TIER_KINDS:
            errors.append(ValidationFailed(f"Invalid tier type for {label}: {data.get('type')}"))
        else:
            tier.kind = kind
    if "amount" in data:
        amount = safe_int(data.get("amount"), default=-1)
        if amount < 0:
            errors.append(ValidationFailed(f"Invalid amount for {label}"))
        else:
            tier.amount = amount
    if "currency" in data and data.get("currency"):
        tier.currency = data["currency"].upper()
    if "interval" in data:
        interval = data.get("interval")
        if interval in (None, "", "none"):
            tier.interval = None
        elif interval in RECURRING_INTERVALS:
            tier.interval = interval
        else:
            errors.append(ValidationFailed(f"Invalid interval for {label}: {interval}"))
    if "goal" in data:
        tier.goal = safe_int(data.get("goal"), default=None)
    if "maxQuantity" in data:
        max_quantity = safe_int(data.get("maxQuantity"), default=None)
        if max_quantity is not None:
            taken = ordered_quantity(tier.id) if tier.id else 0
            if max_quantity < taken:
                errors.append(ValidationFailed(
                    f"Max quantity of {label} cannot be lower than the {taken} already ordered"
                ))
                return
        tier.max_quantity = max_quantity


@tiers_bp.route("/collectives/<int:collective_id>/tiers", methods=["PUT"])
@login_required
def edit_tiers(collective_id: int):
    """Create or update tiers of a collective.

    Existing subscriptions keep the terms they were created with.
    """
    collective = db.session.get(Collective, collective_id)
    if collective is None:
        raise NotFound(f"No collective found with id: {collective_id}")
    user = get_current_user()
    if not can_edit_collective(user, collective):
        raise Unauthorized(
            "You need to be logged in as a core contributor or as a host "
            f"of the {collective.name} collective"
        )

    payload = request.get_json(silent=True) or {}
    errors: list = []
    touched: list[Tier] = []
    with db.session.no_autoflush:
        for data in payload.get("tiers", []):
            tier_id = safe_int(data.get("id"), default=None)
            if tier_id is None:
                tier = Tier(collective_id=collective.id, currency=collective.currency)
                db.session.add(tier)
            else:
                tier = Tier.query.filter_by(id=tier_id, collective_id=collective.id).first()
                if tier is None:
                    errors.append(NotFound(
                        f"No tier found with tier id: {tier_id} "
                        f"for collective slug {collective.slug}"
                    ))
                    continue
            _apply_tier_data(tier, data, errors)
            touched.append(tier)

    if errors:
        db.session.rollback()
    raise_if_any(errors)

    db.session.flush()
    for tier in touched:
        log_action("tier_saved", "tier", tier.id, f"{tier.name} on {collective.slug}")
    db.session.commit()
    logger.info("Saved %s tier(s) of %s", len(touched), collective.slug)
    return jsonify([serialize_tier(t) for t in touched])
