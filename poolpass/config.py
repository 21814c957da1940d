from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

from .errors import ConfigError

GENDERS = ("male", "female")


@dataclass(frozen=True)
class EventInfo:
    organizer: str = "REGAL STAR GYM"
    title: str = "Wave & Vibe Pool Party"
    date: str = "Saturday, December 7, 2025"
    time: str = "12:00 PM"
    venue: str = "Gladman Hotel"
    address: str = "No 2b Udouweme Street, off Abak Road, Uyo"
    contact: str = "08145036786 | 09038114850"
    ticket_types: Dict[str, str] = field(default_factory=lambda: {
        "male": "Guys - Early Bird",
        "female": "Ladies - Early Bird",
    })


@dataclass(frozen=True)
class Settings:
    webhook_secret: str
    gateway_public_key: str
    gateway_secret_key: str
    gateway_base_url: str = "https://api.flutterwave.com"
    gateway_backend: str = "flutterwave"  # 'flutterwave' | 'mock'
    currency: str = "NGN"
    ticket_prefix: str = "RSG-PPOOL"
    ticket_prices: Dict[str, int] = field(default_factory=dict)

    store_backend: str = "file"  # 'file' | 'sql' | 'redis'
    tickets_file: str = "tickets.json"
    artifacts_dir: str = "tickets"
    database_url: Optional[str] = None
    redis_url: str = "redis://127.0.0.1:6379"

    public_base_url: Optional[str] = None

    email_delivery: str = "disabled"  # 'disabled' | 'smtp'
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = None
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    admin_email: Optional[str] = None

    log_level: str = "INFO"
    event: EventInfo = field(default_factory=EventInfo)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ

        webhook_secret = env.get("FLUTTERWAVE_WEBHOOK_SECRET", "")
        public_key = env.get("FLUTTERWAVE_PUBLIC_KEY", "")
        secret_key = env.get("FLUTTERWAVE_SECRET_KEY", "")
        if not webhook_secret:
            raise ConfigError(
                "FLUTTERWAVE_WEBHOOK_SECRET is required for webhook "
                "verification"
            )
        if not public_key or not secret_key:
            raise ConfigError(
                "FLUTTERWAVE_PUBLIC_KEY and FLUTTERWAVE_SECRET_KEY are "
                "required"
            )

        store_backend = env.get("TICKET_STORE_BACKEND", "file").lower()
        database_url = env.get("DATABASE_URL") or None
        if store_backend == "sql" and not database_url:
            raise ConfigError("TICKET_STORE_BACKEND=sql needs DATABASE_URL")

        smtp_port = env.get("SMTP_PORT")
        return cls(
            webhook_secret=webhook_secret,
            gateway_public_key=public_key,
            gateway_secret_key=secret_key,
            gateway_base_url=env.get(
                "FLUTTERWAVE_BASE_URL", "https://api.flutterwave.com"
            ),
            gateway_backend=env.get("GATEWAY_BACKEND", "flutterwave").lower(),
            currency=env.get("PAYMENT_CURRENCY", "NGN").upper(),
            ticket_prefix=env.get("TICKET_ID_PREFIX", "RSG-PPOOL"),
            ticket_prices=parse_prices(env.get("TICKET_PRICES", "")),
            store_backend=store_backend,
            tickets_file=env.get("TICKETS_FILE", "tickets.json"),
            artifacts_dir=env.get("TICKETS_DIR", "tickets"),
            database_url=database_url,
            redis_url=env.get("REDIS_URL", "redis://127.0.0.1:6379"),
            public_base_url=env.get("PUBLIC_BASE_URL") or None,
            email_delivery=env.get("EMAIL_DELIVERY", "disabled").lower(),
            smtp_host=env.get("SMTP_HOST") or None,
            smtp_port=int(smtp_port) if smtp_port else None,
            smtp_user=env.get("SMTP_USER") or env.get("EMAIL_USER") or None,
            smtp_pass=(
                env.get("SMTP_PASS") or env.get("EMAIL_PASSWORD") or None
            ),
            admin_email=env.get("ADMIN_EMAIL") or env.get("SMTP_USER") or None,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )


def parse_prices(raw: str) -> Dict[str, int]:
    """Parse ``male=5000,female=3000`` into a price table."""
    prices: Dict[str, int] = {}
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        gender, sep, amount = part.partition("=")
        gender = gender.strip().lower()
        if not sep or gender not in GENDERS:
            raise ConfigError(f"invalid TICKET_PRICES entry: {part!r}")
        try:
            prices[gender] = int(amount)
        except ValueError:
            raise ConfigError(f"invalid TICKET_PRICES amount: {part!r}")
    return prices
