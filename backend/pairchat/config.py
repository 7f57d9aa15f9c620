"""pairchat application configuration.

Loads settings from two YAML files:
  * pairchat.settings.yaml  - non-secret configuration
  * pairchat.secrets.yaml   - secrets (never committed)

Both files are optional; missing files fall back to model defaults.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("pairchat.settings.yaml")
SECRETS_FILE  = Path("pairchat.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:                 str       = "0.0.0.0"
    port:                 int       = 8000
    allowed_origins:      List[str] = Field(default_factory=lambda: ["*"])
    # Longest a single outbound frame may take before the session is dropped
    send_timeout_seconds: float     = Field(default=5.0, gt=0)


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class StoreSettings(BaseModel):
    """Durable store location and the bound applied to every store call."""
    db_path:         str   = "pairchat.duckdb"
    timeout_seconds: float = Field(default=5.0, gt=0)


class AuthSettings(BaseModel):
    token_expire_minutes: int = 60 * 24 * 7


class MessageSettings(BaseModel):
    max_length:        int = Field(default=5000, ge=1)
    default_page_size: int = Field(default=50, ge=1)
    max_page_size:     int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _page_sizes_consistent(self) -> "MessageSettings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class AppSettings(BaseModel):
    server:   ServerSettings  = Field(default_factory=ServerSettings)
    logging:  LoggingSettings = Field(default_factory=LoggingSettings)
    store:    StoreSettings   = Field(default_factory=StoreSettings)
    auth:     AuthSettings    = Field(default_factory=AuthSettings)
    messages: MessageSettings = Field(default_factory=MessageSettings)
    secrets:  Secrets         = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Path = SETTINGS_FILE,
    secrets_path: Path = SECRETS_FILE,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(secrets_path)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, store=%s, timeout=%ss)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.store.db_path,
        app_settings.store.timeout_seconds,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Forget cached settings so the next get_config() reloads from disk."""
    global _config
    _config = None
