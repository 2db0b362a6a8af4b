"""Utility / helper functions used across the application."""

from __future__ import annotations

import datetime
import logging
import re
from datetime import timezone

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


# ---------------------------------------------------------------------------
# Datetime helpers
# ---------------------------------------------------------------------------

def utc_now() -> datetime.datetime:
    """Return current UTC datetime.  Used as SQLAlchemy column default."""
    return datetime.datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Safe type conversions
# ---------------------------------------------------------------------------

def safe_int(value, default: int = 0) -> int:
    """Safely convert *value* to ``int``, returning *default* on failure."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning("Could not convert %r to int, using default %s", value, default)
        return default


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def slugify(text: str) -> str:
    """Lowercase *text* and collapse everything but ``a-z0-9`` into dashes."""
    return _SLUG_RE.sub("-", (text or "").lower()).strip("-")


def format_amount(amount: int, currency: str) -> str:
    """Render an amount in minor units, e.g. ``2000, "USD"`` -> ``USD 20.00``."""
    return f"{currency} {amount / 100:.2f}"
