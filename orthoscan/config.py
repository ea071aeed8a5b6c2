"""
Application Configuration.

Pydantic Settings model for the OrthoScan lab workflow core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- State store ---
    DOCUMENT_STORE_PATH: str = "orthoscan_local.db"

    # --- Supabase storage (attachments) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")
    STORAGE_BUCKET: str = "orthoscan"
    SIGNED_URL_TTL_S: int = 60 * 60 * 24 * 30  # 30 days
    STORAGE_CACHE_CONTROL_S: int = 3600

    # --- Treatment codes ---
    # A clinic matching either rule is lab-owned and receives "A" codes.
    INTERNAL_CLINIC_IDS: list[str] = Field(default_factory=lambda: ["clinic_arrimo"])
    INTERNAL_CLINIC_TRADE_NAME: str = "ARRIMO"

    # --- Lab pipeline ---
    LAB_ORDER_DUE_DAYS: int = Field(default=7, ge=0)
    # Days before a tray's due date that its programmed replenishment is
    # raised.  0 raises it on the due date itself.
    REPLENISHMENT_LEAD_DAYS: int = Field(default=0, ge=0)

    # --- Audit trail ---
    AUDIT_LOG_MAX_ENTRIES: int = Field(default=2000, ge=1)

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "orthoscan.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when storage configuration is empty.

        Without Supabase credentials every attachment stays local until an
        operator re-uploads it.
        """
        _log = logging.getLogger("orthoscan.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found. All configuration loaded from "
                "environment variables or defaults."
            )

        if not self.SUPABASE_URL:
            _log.warning(
                "SUPABASE_URL is empty. Attachment uploads are disabled and "
                "files will be kept as local attachments."
            )

        return self

    @property
    def storage_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_ANON_KEY.get_secret_value())


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path skips the lock.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
