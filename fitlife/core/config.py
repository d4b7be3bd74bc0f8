from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at the project root: fitlife/core/config.py -> fitlife/core -> fitlife -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./fitlife.db"
    # CORS: comma separated origins; in production e.g. https://app.fitlife.vn
    cors_origins: str = "*"
    # POST /notifications/test per IP
    rate_limit_test_push_per_minute: int = 5
    admin_secret: str = ""             # X-Admin-Secret for /admin/notifications/*
    # Web Push (VAPID). Without a public key the client cannot subscribe,
    # without a private key nothing can be delivered.
    vapid_public_key: str = ""
    vapid_private_key: str = ""
    vapid_admin_email: str = "admin@fitlife.vn"
    push_icon: str = "/icons/app-icon-192.png"
    push_badge: str = "/icons/badge-icon.png"
    push_ttl_seconds: int = 24 * 3600  # how long the push service keeps an undelivered message
    notifications_page_size_max: int = 100

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("vapid_public_key", "vapid_private_key", mode="before")
    @classmethod
    def strip_vapid_key(cls, v: str | None) -> str:
        """Keys pasted from a terminal often carry whitespace or a trailing newline."""
        return (v or "").strip()

    @field_validator("admin_secret", mode="before")
    @classmethod
    def strip_admin_secret(cls, v: str | None) -> str:
        return (v or "").strip()


settings = Settings()


def is_push_configured() -> bool:
    """Both halves of the VAPID key pair are present."""
    return bool(settings.vapid_public_key and settings.vapid_private_key)
