"""Environment-driven settings for the picture service."""

import logging
import os
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger(__name__)


def _load_int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning("Invalid value '%s' for %s. Falling back to %s.", raw, name, default)
        return default


def _load_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _load_list_env(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass
class Settings:
    picture_storage_path: str = "./var/images"
    listing_url_prefix: str = "/assets/img/listings"
    user_url_prefix: str = "/assets/img/users"
    rate_limiting_enabled: bool = True
    rate_limit_max_requests: int = 100
    rate_limit_window_seconds: int = 60
    allowed_origins: List[str] = field(default_factory=lambda: ["http://localhost"])


def load_settings() -> Settings:
    """Build settings from the process environment."""
    return Settings(
        picture_storage_path=os.getenv("PICTURE_STORAGE_PATH", "./var/images"),
        listing_url_prefix=os.getenv("LISTING_PICTURE_URL_PREFIX", "/assets/img/listings").rstrip("/"),
        user_url_prefix=os.getenv("USER_PICTURE_URL_PREFIX", "/assets/img/users").rstrip("/"),
        rate_limiting_enabled=_load_bool_env("RATE_LIMITING_ENABLED", True),
        rate_limit_max_requests=_load_int_env("RATE_LIMIT_MAX_REQUESTS", 100),
        rate_limit_window_seconds=_load_int_env("RATE_LIMIT_WINDOW_SECONDS", 60),
        allowed_origins=_load_list_env("CORS_ALLOWED_ORIGINS", ["http://localhost"]),
    )


settings = load_settings()
