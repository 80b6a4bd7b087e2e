"""
core/config.py -- Runtime configuration for the baby tracker.

Settings come from the process environment and, when present, a .env file in
the working directory. Field names are the lowercase form of the variable
names (DATABASE_URL -> database_url). Nothing else in the project reads
os.environ; everything goes through get_settings(), which builds Settings on
first use and hands back the same object afterwards.

Deployment modes:
  selfhosted  default. Accounts never expire.
  saas        trial and plan dates are enforced (see auth/resolver.py).

SECRET_KEY rules:
  [M7] Required unless DEBUG=true. With DEBUG on, a throwaway key is generated
       and a warning is logged; every JWT and device token issued under it
       stops working when the process restarts.
  [M6] At least 32 characters. It keys both the JWT signature and the
       device-token HMAC.

Layer rule: core/ imports nothing from api/, web/, auth/, tracker/ or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("babytracker.config")

DEPLOYMENT_MODES = ("selfhosted", "saas")


class Settings(BaseSettings):
    """Every field has a default so tests can build Settings() without a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- server ---------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key() replaces or rejects it.
    secret_key: str = ""
    database_url: str = "sqlite:///./babytracker.db"
    deployment_mode: str = "selfhosted"

    # --- sessions -------------------------------------------------------

    secure_cookies: bool = False
    # Magic-link tokens carry no exp; revoking the device token ends them.
    token_expire_seconds: int = 8 * 3600
    account_token_expire_seconds: int = 7 * 24 * 3600
    setup_token_expire_seconds: int = 24 * 3600
    blacklist_purge_seconds: int = 3600

    # --- http -----------------------------------------------------------

    # Kiosks and voice hubs tend to reach the server by LAN address.
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    voice_rate_limit: str = "60/minute"

    @field_validator("deployment_mode")
    @classmethod
    def normalize_deployment_mode(cls, value: str) -> str:
        mode = value.strip().lower()
        if mode not in DEPLOYMENT_MODES:
            raise ValueError(f"DEPLOYMENT_MODE must be one of: {', '.join(DEPLOYMENT_MODES)}")
        return mode

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY must be set unless DEBUG=true. "
                    "Add it to the environment or to .env."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("No SECRET_KEY configured; generated a temporary one for this process.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def is_saas(self) -> bool:
        return self.deployment_mode == "saas"


@lru_cache
def get_settings() -> Settings:
    """Cached Settings instance. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
