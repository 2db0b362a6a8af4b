"""SQLAlchemy models and membership / notification constants."""

from __future__ import annotations

from extensions import db
from utils import utc_now

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

COLLECTIVE_KINDS = {"PERSON", "ORGANIZATION", "COLLECTIVE", "EVENT"}
TIER_KINDS = {"TICKET", "TIER"}
RECURRING_INTERVALS = {"month", "year"}

ROLE_HOST = "HOST"
ROLE_ADMIN = "ADMIN"
ROLE_BACKER = "BACKER"
ROLE_ATTENDEE = "ATTENDEE"
ROLE_FOLLOWER = "FOLLOWER"
VALID_ROLES = [ROLE_HOST, ROLE_ADMIN, ROLE_BACKER, ROLE_ATTENDEE, ROLE_FOLLOWER]

# Roles allowed to edit a collective (and to see members' email addresses).
EDITOR_ROLES = {ROLE_ADMIN, ROLE_HOST}

ACTIVITY_MEMBER_CREATED = "collective.member.created"
ACTIVITY_TICKET_CONFIRMED = "ticket.confirmed"
ACTIVITY_TRANSACTION_CREATED = "collective.transaction.created"
ACTIVITY_TYPES = {
    ACTIVITY_MEMBER_CREATED,
    ACTIVITY_TICKET_CONFIRMED,
    ACTIVITY_TRANSACTION_CREATED,
}

MAILING_LIST = "mailinglist"
DEFAULT_NOTIFICATION_CHANNEL = "email"


# ---------------------------------------------------------------------------
# Collective / User
# ---------------------------------------------------------------------------

class Collective(db.Model):
    """A person, organization, group or event that can receive contributions."""
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(120), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    kind = db.Column(db.String(20), nullable=False, default="COLLECTIVE")
    description = db.Column(db.Text)
    currency = db.Column(db.String(10), default="USD")
    website = db.Column(db.String(255))
    twitter_handle = db.Column(db.String(60))
    parent_collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"))
    host_collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    parent = db.relationship(
        "Collective", remote_side=[id], foreign_keys=[parent_collective_id]
    )
    host = db.relationship(
        "Collective", remote_side=[id], foreign_keys=[host_collective_id]
    )
    tiers = db.relationship("Tier", backref="collective", cascade="all, delete-orphan")

    __table_args__ = (
        db.Index("ix_collective_parent_id", "parent_collective_id"),
    )

    @property
    def is_event(self) -> bool:
        return self.kind == "EVENT"


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    name = db.Column(db.String(200))
    # NULL for identities provisioned from an order; they cannot log in.
    password_hash = db.Column(db.String(255))
    collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    collective = db.relationship("Collective", foreign_keys=[collective_id])


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class Tier(db.Model):
    """A priced (or free) offering with optional capacity and recurrence."""
    id = db.Column(db.Integer, primary_key=True)
    collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(500))
    kind = db.Column(db.String(20), nullable=False, default="TIER")
    amount = db.Column(db.Integer, nullable=False, default=0)  # minor units
    currency = db.Column(db.String(10), default="USD")
    interval = db.Column(db.String(10))  # month / year / None
    max_quantity = db.Column(db.Integer)  # None = unlimited
    goal = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.Index("ix_tier_collective_id", "collective_id"),
        db.CheckConstraint("amount >= 0", name="ck_tier_amount_non_negative"),
        db.CheckConstraint(
            "max_quantity IS NULL OR max_quantity >= 0", name="ck_tier_max_quantity"
        ),
    )

    @property
    def is_recurring(self) -> bool:
        return self.interval in RECURRING_INTERVALS


# ---------------------------------------------------------------------------
# Orders & subscriptions
# ---------------------------------------------------------------------------

class Subscription(db.Model):
    """Recurring billing terms copied from a tier at order time."""
    id = db.Column(db.Integer, primary_key=True)
    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False)
    interval = db.Column(db.String(10), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    gateway_reference = db.Column(db.String(120))
    deactivated_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)


class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    from_collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    tier_id = db.Column(db.Integer, db.ForeignKey("tier.id"))
    quantity = db.Column(db.Integer, nullable=False, default=1)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="USD")
    public_message = db.Column(db.Text)
    payment_provider = db.Column(db.String(30))
    gateway_reference = db.Column(db.String(120))
    processed_at = db.Column(db.DateTime)
    subscription_id = db.Column(db.Integer, db.ForeignKey("subscription.id"), unique=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    collective = db.relationship("Collective", foreign_keys=[collective_id])
    from_collective = db.relationship("Collective", foreign_keys=[from_collective_id])
    created_by_user = db.relationship("User", foreign_keys=[created_by_user_id])
    tier = db.relationship("Tier")
    subscription = db.relationship("Subscription", backref=db.backref("order", uselist=False))

    __table_args__ = (
        db.Index("ix_order_tier_id", "tier_id"),
        db.CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
    )

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------

class Member(db.Model):
    """A role held by *member_collective* on *collective*."""
    id = db.Column(db.Integer, primary_key=True)
    collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    member_collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    tier_id = db.Column(db.Integer, db.ForeignKey("tier.id"))
    created_at = db.Column(db.DateTime, default=utc_now)

    collective = db.relationship("Collective", foreign_keys=[collective_id])
    member_collective = db.relationship("Collective", foreign_keys=[member_collective_id])
    tier = db.relationship("Tier")

    __table_args__ = (
        db.Index("ix_member_collective_role", "collective_id", "role"),
        db.Index("ix_member_member_collective_id", "member_collective_id"),
    )


# ---------------------------------------------------------------------------
# Notification opt-outs
# ---------------------------------------------------------------------------

class Notification(db.Model):
    """Opt-out override; no row for a (user, collective, type) means subscribed.

    ``type`` is either an activity type or a mailing list key
    (``mailinglist`` / ``mailinglist.<channel>``).  ``channel`` is the
    delivery medium.
    """
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False)
    collective_id = db.Column(db.Integer, db.ForeignKey("collective.id"), nullable=False)
    type = db.Column(db.String(80), nullable=False)
    channel = db.Column(db.String(30), nullable=False, default=DEFAULT_NOTIFICATION_CHANNEL)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "collective_id", "type", "channel", name="uq_notification_key"
        ),
    )


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

class AuditLog(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    action = db.Column(db.String(60), nullable=False)
    entity_type = db.Column(db.String(60), nullable=False)
    entity_id = db.Column(db.Integer)
    details = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=utc_now)
