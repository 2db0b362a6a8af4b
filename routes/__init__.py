"""Blueprint registration."""

from routes.auth import auth_bp
from routes.members import members_bp
from routes.notifications import notifications_bp
from routes.orders import orders_bp
from routes.payments import payments_bp
from routes.tiers import tiers_bp

ALL_BLUEPRINTS = [
    auth_bp,
    orders_bp,
    tiers_bp,
    members_bp,
    notifications_bp,
    payments_bp,
]


def register_blueprints(app):
    """Register all application blueprints on *app*."""
    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)
