from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: skillscert/core/config.py -> skillscert/core -> skillscert -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# Stripe secret keys start with sk_ (sk_test_ / sk_live_)
STRIPE_KEY_PREFIX = "sk_"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./skillscert.db"
    # CORS: comma separated origins; "*" allows everything (development only)
    cors_origins: str = "*"
    environment: str = "development"
    frontend_url: str = "http://localhost:5500"

    # Generic per-IP limit and per-endpoint limits (slowapi syntax)
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60
    rate_limit_login: str = "5/minute;20/hour"
    rate_limit_resend: str = "3/minute;10/hour"
    rate_limit_checkout: str = "10/minute"

    # Stripe Checkout
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "mxn"
    course_price_cents: int = 50000  # 500.00 MXN
    course_name: str = "Acceso SkillsCert EC0301"
    course_description: str = "Sistema completo de diseño de cursos EC0301"
    provider_timeout_seconds: float = 10.0
    provider_max_retries: int = 3
    provider_retry_backoff_seconds: float = 0.5

    # Access credential lifecycle
    access_duration_days: int = 90
    # extend: returning buyer keeps the code, validity is added on top
    # replace: returning buyer gets a brand new code
    repeat_purchase_policy: Literal["extend", "replace"] = "extend"
    access_code_hash_rounds: int = 12
    # Fernet key material for stored codes, independent of SECRET_KEY so that
    # rotating the session secret leaves issued codes readable. Empty falls
    # back to SECRET_KEY (development). Old keys, comma separated, stay readable.
    access_code_key: str = ""
    access_code_previous_keys: str = ""
    max_failed_attempts: int = 4
    session_token_days: int = 7

    # E-mail delivery (SMTP)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "noreply@skillscert.mx"
    smtp_from_name: str = "SkillsCert EC0301"
    smtp_use_tls: bool = True
    notification_timeout_seconds: float = 15.0
    notification_lang: str = "es"

    # WhatsApp Cloud API (optional second channel)
    whatsapp_api_url: str = "https://graph.facebook.com/v19.0"
    whatsapp_phone_number_id: str = ""
    whatsapp_token: str = ""

    # Support / admin endpoints (X-Admin-Secret)
    admin_secret: str = ""

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("stripe_secret_key", "stripe_webhook_secret", mode="before")
    @classmethod
    def strip_stripe_keys(cls, v: str | None) -> str:
        """Pasted keys often carry trailing whitespace."""
        return (v or "").strip()

    @field_validator("repeat_purchase_policy", mode="before")
    @classmethod
    def normalize_policy(cls, v: str | None) -> str:
        return (v or "extend").strip().lower()


settings = Settings()


def is_stripe_configured() -> bool:
    key = (settings.stripe_secret_key or "").strip()
    return bool(key) and key.startswith(STRIPE_KEY_PREFIX)


def is_webhook_configured() -> bool:
    return bool((settings.stripe_webhook_secret or "").strip())
