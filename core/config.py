"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. database_url -> DATABASE_URL). Type coercion and validation are
      built in.

  @model_validator(mode="after"): cross-field validation once every field is
      resolved -- the backend must have its location configured, and an admin
      API key, when set, must be long enough to resist guessing.

The lockout threshold is deliberately NOT configurable: it is part of the
authentication contract (auth.engine.LOCKOUT_THRESHOLD).

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    storage_backend: Literal["sql", "xml"] = "sql"
    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'gatehouse_security.db'}"
    xml_path: str = str(_PROJECT_ROOT / "security.xml")

    # ------------------------------------------------------------------
    # First-run administrator (empty password = no bootstrap)
    # ------------------------------------------------------------------

    bootstrap_admin_login: str = "root"
    bootstrap_admin_password: str = ""
    bootstrap_admin_role: str = "admin"

    # ------------------------------------------------------------------
    # HTTP API
    # ------------------------------------------------------------------

    # Empty string disables every admin route (they answer 403).
    admin_api_key: str = ""
    check_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject configurations that cannot work.

        The selected backend must have its location set. ADMIN_API_KEY is
        optional, but when present it must be at least 32 characters: it is
        the only thing standing between the network and user administration.
        """
        if self.storage_backend == "sql" and not self.database_url.strip():
            raise ValueError("DATABASE_URL must be set when STORAGE_BACKEND=sql.")
        if self.storage_backend == "xml" and not self.xml_path.strip():
            raise ValueError("XML_PATH must be set when STORAGE_BACKEND=xml.")
        if self.admin_api_key and len(self.admin_api_key) < 32:
            raise ValueError("ADMIN_API_KEY must be at least 32 characters.")
        if not self.admin_api_key:
            logger.warning("ADMIN_API_KEY is not set -- user and role administration over HTTP is disabled.")
        # DEBUG=true forces verbose logging whatever LOG_LEVEL says.
        self.log_level = "DEBUG" if self.debug else self.log_level.upper()
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
