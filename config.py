"""Configuration loading — YAML file + environment-variable overrides."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass

import yaml

from config_models import AppConfig, EmailConfig, GopayConfig, PaypalConfig, StripeConfig

logger = logging.getLogger(__name__)


@dataclass
class LoadedConfig:
    app: AppConfig
    email: EmailConfig
    stripe: StripeConfig
    paypal: PaypalConfig
    gopay: GopayConfig
    database_uri: str


def _env_flag(name: str, fallback) -> bool:
    return os.environ.get(name, str(fallback)).lower() in ("true", "1", "yes")


def load_config() -> LoadedConfig:
    """Load configuration from *config.yaml* with env-var overrides.

    Environment variables take precedence over config.yaml values.
    """
    config_path = os.environ.get("CONFIG_PATH", "config.yaml")
    raw: dict = {}
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}

    app_cfg = raw.get("app", {})
    email_cfg = raw.get("email", {})
    stripe_cfg = raw.get("stripe", {})
    paypal_cfg = raw.get("paypal", {})
    gopay_cfg = raw.get("gopay", {})
    db_cfg = raw.get("database", {})

    secret_key = os.environ.get("APP_SECRET_KEY", app_cfg.get("secret_key", ""))
    if not secret_key or secret_key == "change-me":
        secret_key = secrets.token_hex(32)
        logger.warning(
            "Using auto-generated secret key. Set APP_SECRET_KEY env var "
            "or app.secret_key in config.yaml for stable sessions across restarts."
        )

    return LoadedConfig(
        app=AppConfig(
            name=app_cfg.get("name", "Collectives"),
            secret_key=secret_key,
            base_currency=app_cfg.get("base_currency", "USD"),
        ),
        email=EmailConfig(
            enabled=_env_flag("EMAIL_ENABLED", email_cfg.get("enabled", False)),
            smtp_host=os.environ.get("SMTP_HOST", email_cfg.get("smtp_host", "")),
            smtp_port=int(os.environ.get("SMTP_PORT", email_cfg.get("smtp_port", 587))),
            smtp_user=os.environ.get("SMTP_USER", email_cfg.get("smtp_user", "")),
            smtp_password=os.environ.get("SMTP_PASSWORD", email_cfg.get("smtp_password", "")),
            sender=os.environ.get("EMAIL_SENDER", email_cfg.get("sender", "")),
        ),
        stripe=StripeConfig(
            enabled=_env_flag("STRIPE_ENABLED", stripe_cfg.get("enabled", False)),
            secret_key=os.environ.get("STRIPE_SECRET_KEY", stripe_cfg.get("secret_key", "")),
            webhook_secret=os.environ.get(
                "STRIPE_WEBHOOK_SECRET", stripe_cfg.get("webhook_secret", "")
            ),
        ),
        paypal=PaypalConfig(
            enabled=_env_flag("PAYPAL_ENABLED", paypal_cfg.get("enabled", False)),
            client_id=os.environ.get("PAYPAL_CLIENT_ID", paypal_cfg.get("client_id", "")),
            client_secret=os.environ.get(
                "PAYPAL_CLIENT_SECRET", paypal_cfg.get("client_secret", "")
            ),
            api_url=os.environ.get(
                "PAYPAL_API_URL",
                paypal_cfg.get("api_url", "https://api.sandbox.paypal.com"),
            ),
        ),
        gopay=GopayConfig(
            enabled=_env_flag("GOPAY_ENABLED", gopay_cfg.get("enabled", False)),
            goid=os.environ.get("GOPAY_GOID", gopay_cfg.get("goid", "")),
            client_id=os.environ.get("GOPAY_CLIENT_ID", gopay_cfg.get("client_id", "")),
            client_secret=os.environ.get("GOPAY_CLIENT_SECRET", gopay_cfg.get("client_secret", "")),
            gateway_url=os.environ.get(
                "GOPAY_GATEWAY_URL",
                gopay_cfg.get("gateway_url", "https://gw.sandbox.gopay.com/api"),
            ),
        ),
        database_uri=os.environ.get("DATABASE_URI", db_cfg.get("uri", "sqlite:///collectives.db")),
    )


def enable_sqlite_fks(dbapi_conn, _connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
