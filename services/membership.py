"""Backing identities and membership rows.

The identity behind an order is resolved here: an existing user, a user
provisioned on the fly from a bare email address, and optionally an
organization the user acts for.  Provisioned users get no password and are
never treated as logged in because they appeared in an order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from sqlalchemy import func

from errors import NotFound, PipelineError, Unauthorized, ValidationFailed, raise_if_any
from extensions import db
from models import (
    ROLE_ADMIN,
    ROLE_ATTENDEE,
    ROLE_BACKER,
    ROLE_FOLLOWER,
    VALID_ROLES,
    Collective,
    Member,
    Order,
    Tier,
    User,
)
from services.audit import log_action
from services.auth import can_edit_collective, user_roles
from utils import safe_int, slugify

logger = logging.getLogger(__name__)


@dataclass
class BackingIdentity:
    user: User
    from_collective: Collective
    created_user: bool = False
    created_collective: bool = False


def default_currency() -> str:
    """Currency of collectives created by the pipeline (``app.base_currency``)."""
    app_config = current_app.config.get("APP_CONFIG")
    return (app_config.base_currency if app_config else None) or "USD"


def role_for_tier(tier: Optional[Tier]) -> str:
    if tier is not None and tier.kind == "TICKET":
        return ROLE_ATTENDEE
    return ROLE_BACKER


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def unique_slug(text: str, fallback: str = "collective") -> str:
    base = slugify(text) or fallback
    slug, n = base, 1
    while Collective.query.filter_by(slug=slug).first() is not None:
        n += 1
        slug = f"{base}-{n}"
    return slug


def find_user_by_email(email: str) -> Optional[User]:
    email = (email or "").strip().lower()
    if not email:
        return None
    return User.query.filter(func.lower(User.email) == email).first()


def find_or_create_user(email: str, name: Optional[str] = None) -> tuple[User, bool]:
    """Return ``(user, created)``.  New users get a PERSON collective.

    Does NOT commit.
    """
    user = find_user_by_email(email)
    if user is not None:
        return user, False

    email = email.strip().lower()
    collective = Collective(
        kind="PERSON",
        name=name or "anonymous",
        slug=unique_slug(name or email.split("@", 1)[0], fallback="user"),
        currency=default_currency(),
    )
    db.session.add(collective)
    db.session.flush()
    user = User(email=email, name=name, collective_id=collective.id)
    db.session.add(user)
    db.session.flush()
    logger.info("Provisioned user %s (collective %s) for %s", user.id, collective.id, email)
    return user, True


def check_backing_request(
    actor: Optional[User],
    user_data: Optional[dict],
    from_collective_data: Optional[dict],
) -> list[PipelineError]:
    """Problems with the identity part of an order, found before anything is written."""
    errors: list[PipelineError] = []
    email = (user_data or {}).get("email")
    if actor is None and not email:
        errors.append(ValidationFailed("An email address is required to place an order"))

    data = from_collective_data or {}
    if data.get("id"):
        org = db.session.get(Collective, safe_int(data["id"]))
        if org is None:
            errors.append(NotFound(f"No collective found with id: {data['id']}"))
        elif actor is None or (
            org.id != actor.collective_id and ROLE_ADMIN not in user_roles(actor, org.id)
        ):
            errors.append(Unauthorized(
                f"You need to be logged in as an admin of the {org.name} "
                "organization to place an order on its behalf"
            ))
    elif data and not (data.get("name") or "").strip():
        errors.append(ValidationFailed("A name is required to create an organization"))
    return errors


def resolve_backing_identity(
    actor: Optional[User],
    user_data: Optional[dict],
    from_collective_data: Optional[dict],
) -> BackingIdentity:
    """Resolve who is paying for an order.

    Without *from_collective_data* the order comes from the user's personal
    collective.  With ``{"id": ...}`` it comes from that existing
    organization, which the actor must administer; with ``{"name": ...}`` a
    new ORGANIZATION collective is created and the user becomes its ADMIN.
    Does NOT commit.
    """
    raise_if_any(check_backing_request(actor, user_data, from_collective_data))

    created_user = False
    if actor is not None:
        user = actor
    else:
        user_data = user_data or {}
        user, created_user = find_or_create_user(user_data["email"], user_data.get("name"))

    data = from_collective_data or {}
    if data.get("id"):
        org = db.session.get(Collective, safe_int(data["id"]))
        return BackingIdentity(user, org, created_user=created_user)

    if not data:
        return BackingIdentity(user, user.collective, created_user=created_user)

    name = data["name"].strip()
    org = Collective(
        kind="ORGANIZATION",
        name=name,
        slug=unique_slug(name, fallback="organization"),
        currency=default_currency(),
        website=data.get("website"),
        twitter_handle=(data.get("twitterHandle") or "").lstrip("@") or None,
    )
    db.session.add(org)
    db.session.flush()
    db.session.add(Member(
        collective_id=org.id,
        member_collective_id=user.collective_id,
        created_by_user_id=user.id,
        role=ROLE_ADMIN,
    ))
    db.session.flush()
    logger.info("Created organization %s (%s) with admin user %s", org.id, org.slug, user.id)
    return BackingIdentity(user, org, created_user=created_user, created_collective=True)


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

def provision(order: Order, tier: Optional[Tier] = None) -> Member:
    """Grant the order's backer its role.  Commits.

    Event tickets make the backer a member of the event itself.  Calling
    this twice creates two rows.
    """
    tier = tier or order.tier
    member = Member(
        collective_id=tier.collective_id if tier is not None else order.collective_id,
        member_collective_id=order.from_collective_id,
        created_by_user_id=order.created_by_user_id,
        role=role_for_tier(tier),
        tier_id=tier.id if tier is not None else None,
    )
    db.session.add(member)
    db.session.flush()
    log_action(
        "member_created", "member", member.id,
        f"{member.role} of collective {member.collective_id} via order {order.id}",
        user_id=order.created_by_user_id,
    )
    db.session.commit()
    logger.info(
        "Collective %s is now %s of collective %s (order %s)",
        member.member_collective_id, member.role, member.collective_id, order.id,
    )
    return member


# ---------------------------------------------------------------------------
# Membership management
# ---------------------------------------------------------------------------

def add_member(
    actor: Optional[User],
    collective: Collective,
    role: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> Member:
    """Add a role on *collective* outside of an order.

    Anybody may follow a collective (themselves, or by email).  Every other
    role needs an admin or host of the collective.
    """
    role = (role or "").upper()
    if role not in VALID_ROLES:
        raise ValidationFailed(f"Invalid role: {role or '(none)'}")
    if role != ROLE_FOLLOWER and not can_edit_collective(actor, collective):
        raise Unauthorized(
            "You need to be logged in as a core contributor or as a host "
            f"of the {collective.name} collective"
        )

    if email:
        user, _ = find_or_create_user(email, name)
    elif actor is not None:
        user = actor
    else:
        raise ValidationFailed("An email address is required to add a member")

    member = Member(
        collective_id=collective.id,
        member_collective_id=user.collective_id,
        created_by_user_id=actor.id if actor is not None else user.id,
        role=role,
    )
    db.session.add(member)
    db.session.flush()
    log_action("member_added", "member", member.id, f"{role} of {collective.slug}",
               user_id=actor.id if actor is not None else user.id)
    db.session.commit()
    logger.info("Added %s as %s of %s", user.collective_id, role, collective.slug)
    return member


def remove_member(
    actor: Optional[User],
    collective: Collective,
    member_collective_id: int,
    role: str,
) -> int:
    """Remove every *role* row of *member_collective_id* on *collective*."""
    role = (role or "").upper()
    rows = Member.query.filter_by(
        collective_id=collective.id,
        member_collective_id=member_collective_id,
        role=role,
    ).all()
    if not rows:
        raise NotFound("Member not found")

    if actor is None or (
        actor.collective_id != member_collective_id
        and not can_edit_collective(actor, collective)
    ):
        raise Unauthorized(
            "You need to be logged in as this user or as a core contributor "
            f"or as a host of the collective id {collective.id}"
        )

    for row in rows:
        db.session.delete(row)
    log_action("member_removed", "member", rows[0].id,
               f"{role} of {collective.slug} ({len(rows)} row(s))", user_id=actor.id)
    db.session.commit()
    logger.info("Removed %s %s row(s) of %s on %s", len(rows), role, member_collective_id, collective.slug)
    return len(rows)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def _can_see_email(viewer: Optional[User], collective: Collective, user: Optional[User]) -> bool:
    if viewer is None or user is None:
        return False
    return viewer.id == user.id or can_edit_collective(viewer, collective)


def serialize_user(user: User, viewer: Optional[User], collective: Collective) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email if _can_see_email(viewer, collective, user) else None,
    }


def serialize_member(member: Member, viewer: Optional[User]) -> dict:
    """JSON shape of a member; ``email`` is null unless *viewer* may see it."""
    member_collective = member.member_collective
    user = User.query.filter_by(collective_id=member_collective.id).first()
    return {
        "id": member.id,
        "role": member.role,
        "tierId": member.tier_id,
        "collective": {"id": member.collective_id, "slug": member.collective.slug},
        "member": {
            "id": member_collective.id,
            "slug": member_collective.slug,
            "name": member_collective.name,
            "type": member_collective.kind,
            "email": user.email if _can_see_email(viewer, member.collective, user) else None,
        },
    }


def list_members(collective: Collective, role: Optional[str] = None) -> list[Member]:
    query = Member.query.filter_by(collective_id=collective.id)
    if role:
        query = query.filter_by(role=role.upper())
    return query.order_by(Member.id).all()
