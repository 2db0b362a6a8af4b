from dataclasses import dataclass


@dataclass
class AppConfig:
    name: str
    secret_key: str
    base_currency: str


@dataclass
class EmailConfig:
    enabled: bool
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    sender: str


@dataclass
class StripeConfig:
    enabled: bool
    secret_key: str
    webhook_secret: str


@dataclass
class PaypalConfig:
    enabled: bool
    client_id: str
    client_secret: str
    api_url: str


@dataclass
class GopayConfig:
    enabled: bool
    goid: str
    client_id: str
    client_secret: str
    gateway_url: str
