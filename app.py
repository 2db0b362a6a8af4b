"""Application factory — clean entry point for the Flask application."""

from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, g, jsonify, session
from flask_wtf.csrf import CSRFError
from sqlalchemy import event

from config import enable_sqlite_fks, load_config
from errors import ErrorList, PipelineError
from extensions import csrf, db, limiter
from mailer import EmailNotifier
from models import User
from routes import register_blueprints
from services.payments import build_gateways

load_dotenv()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _error_response(kind: str, message: str, status: int):
    return jsonify({"errors": [{"kind": kind, "message": message}]}), status


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(test_config: Optional[dict] = None):
    """Create and configure the Flask application.

    *test_config* is applied on top of the loaded configuration before the
    extensions are initialised.
    """
    cfg = load_config()

    app = Flask(__name__)
    app.config["SQLALCHEMY_DATABASE_URI"] = cfg.database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.secret_key = cfg.app.secret_key
    app.config["APP_CONFIG"] = cfg.app
    app.config["EMAIL_CONFIG"] = cfg.email
    app.config["STRIPE_CONFIG"] = cfg.stripe

    # Collaborators; tests swap these for fakes.
    app.config["PAYMENT_GATEWAYS"] = build_gateways(cfg)
    app.config["NOTIFIER"] = EmailNotifier(cfg.email)

    # Session security
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = (
        os.environ.get("FLASK_ENV", "") != "development"
    )
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)

    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    csrf.init_app(app)
    limiter.init_app(app)
    db.init_app(app)

    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    # SQLite foreign key enforcement
    if "sqlite" in db_uri:
        with app.app_context():
            event.listen(db.engine, "connect", enable_sqlite_fks)

    with app.app_context():
        db.create_all()

    register_blueprints(app)

    from cli import collectives_cli
    app.cli.add_command(collectives_cli)

    # ------------------------------------------------------------------
    # Request hooks
    # ------------------------------------------------------------------

    @app.before_request
    def load_current_user():
        """Set ``g.current_user`` from the session."""
        g.current_user = None
        user_id = session.get("user_id")
        if not user_id:
            return
        user = db.session.get(User, user_id)
        if user and user.is_active:
            g.current_user = user
        else:
            session.clear()

    # ------------------------------------------------------------------
    # Security headers
    # ------------------------------------------------------------------

    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        if os.environ.get("FLASK_ENV") == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # ------------------------------------------------------------------
    # Error handlers
    # ------------------------------------------------------------------

    @app.errorhandler(ErrorList)
    def error_list(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(PipelineError)
    def pipeline_error(error):
        return jsonify({"errors": [error.to_dict()]}), error.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(error):
        return _error_response("ValidationFailed", error.description, 400)

    @app.errorhandler(404)
    def not_found(_error):
        return _error_response("NotFound", "Resource not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return _error_response("ValidationFailed", "Method not allowed", 405)

    @app.errorhandler(500)
    def server_error(_error):
        return _error_response("ServerError", "Internal server error", 500)

    @app.errorhandler(429)
    def ratelimit_handler(_error):
        return _error_response("RateLimited", "Too many requests, try again later", 429)

    return app


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    app = create_app()
    debug_mode = os.environ.get("FLASK_DEBUG", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    host = os.environ.get("FLASK_HOST", "127.0.0.1")
    port = int(os.environ.get("FLASK_PORT", 5000))
    logger.info("Starting application on %s:%s (debug=%s)", host, port, debug_mode)
    app.run(host=host, port=port, debug=debug_mode)
