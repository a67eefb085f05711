"""
Runtime settings, read from the environment (and `.env` when present).
"""
import logging
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = "development"
    # Missing required keys raise at startup instead of only warning
    CONFIG_STRICT: bool = False

    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # HS256 secret shared with the auth provider that issues session tokens
    AUTH_JWT_SECRET: Optional[str] = None

    # Billing is enabled iff STRIPE_SECRET_KEY is set
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None

    # Frontend origin, allowed by CORS
    APP_URL: str = "http://localhost:3000"

    # IANA zone that defines "today" for deadline and reminder checks
    NOTIFY_TIMEZONE: str = "UTC"


settings = Settings()

REQUIRED_KEYS = ("DATABASE_URL", "AUTH_JWT_SECRET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET")


def missing_keys(settings_obj=None) -> List[str]:
    cfg = settings_obj or settings
    return [key for key in REQUIRED_KEYS if not getattr(cfg, key, None)]


def validate_config(strict: Optional[bool] = None, settings_obj=None, logger: Optional[logging.Logger] = None) -> bool:
    """
    Report required keys that are unset. Only key names are logged, never values.

    Raises:
        RuntimeError: in strict mode, when anything is missing
    """
    cfg = settings_obj or settings
    missing = missing_keys(cfg)
    if not missing:
        return True

    message = "Missing required configuration: " + ", ".join(missing)
    if strict if strict is not None else cfg.CONFIG_STRICT:
        raise RuntimeError(message)
    (logger or logging.getLogger("obsidian")).warning(message)
    return False
