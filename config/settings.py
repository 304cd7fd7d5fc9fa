"""
config/settings.py — stayonline Runtime Settings

Merges config.yaml (protocol and reconnect tunables) with .env / environment
variables (token and presence defaults). Pydantic-powered — all fields are
validated and typed.

  - GatewayConfig rejects negative delays and attempt counts at parse time
  - validate_all() performs full startup validation and raises ConfigError
    with a clear, human-readable message listing every problem found
  - load_settings() respects STAYONLINE_CONFIG env var as a fallback
    when no explicit config_path argument is given
"""

from __future__ import annotations

import os
import threading as _threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from exceptions import ConfigError


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

MIN_TOKEN_LENGTH = 50

_VALID_STATUSES   = {"online", "idle", "dnd", "invisible"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_ENCODINGS  = {"json"}


def is_plausible_token(token: Optional[str]) -> bool:
    """A token must be a string longer than MIN_TOKEN_LENGTH characters."""
    return isinstance(token, str) and len(token.strip()) > MIN_TOKEN_LENGTH


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GatewayConfig(BaseModel):
    discovery_url: str = "https://discord.com/api/v9/gateway"
    api_version: int = 9
    encoding: str = "json"
    discovery_timeout_s: float = 10.0
    max_reconnect_attempts: int = 10
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 30000
    invalid_session_delay_ms: int = 5000
    enforce_heartbeat_ack: bool = True
    resume_enabled: bool = False
    intents: int = 0

    @field_validator("discovery_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(
                f"gateway.discovery_url must start with http:// or https://, got '{v}'"
            )
        return v

    @field_validator("encoding")
    @classmethod
    def _known_encoding(cls, v: str) -> str:
        if v not in _VALID_ENCODINGS:
            raise ValueError(
                f"gateway.encoding '{v}' is not supported. "
                f"Supported: {sorted(_VALID_ENCODINGS)}"
            )
        return v

    @field_validator("max_reconnect_attempts")
    @classmethod
    def _non_negative_attempts(cls, v: int) -> int:
        if v < 0:
            raise ValueError("gateway.max_reconnect_attempts must be >= 0")
        return v

    @field_validator("backoff_base_ms", "backoff_max_ms", "invalid_session_delay_ms")
    @classmethod
    def _non_negative_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("gateway delays must be >= 0 milliseconds")
        return v

    @field_validator("discovery_timeout_s")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("gateway.discovery_timeout_s must be > 0")
        return v


class ClientPropertiesConfig(BaseModel):
    """Client properties declared in the identify frame."""
    os: str = "linux"
    browser: str = "chrome"
    device: str = "chrome"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 5
    console_output: bool = True
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    stayonline runtime settings.

    Priority (highest to lowest):
      1. Environment variables
      2. .env file
      3. config.yaml
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # -- Secrets / presence defaults from .env -------------------------------
    token: Optional[str] = Field(default=None, alias="DISCORD_TOKEN")
    status: str = Field(default="online", alias="STATUS")
    custom_status: str = Field(default="24/7 Online", alias="CUSTOM_STATUS")

    # -- Structured config (from config.yaml) --------------------------------
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    client: ClientPropertiesConfig = Field(default_factory=ClientPropertiesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # config.yaml arrives as init kwargs and sits below env and .env
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or "online"
        return v

    @field_validator("gateway", mode="before")
    @classmethod
    def _coerce_gateway(cls, v: Any) -> Any:
        return GatewayConfig(**v) if isinstance(v, dict) else v

    @field_validator("client", mode="before")
    @classmethod
    def _coerce_client(cls, v: Any) -> Any:
        return ClientPropertiesConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches the problems that must refuse startup but cannot be
        expressed as a field default (a missing token, an implausible token,
        a status outside the known set, an inverted backoff range).
        """
        errors: list[str] = []

        # ── Token ────────────────────────────────────────────────────────────
        if not self.token:
            errors.append("DISCORD_TOKEN is not set. Add it to your .env file.")
        elif not is_plausible_token(self.token):
            errors.append(
                f"DISCORD_TOKEN looks malformed: expected more than "
                f"{MIN_TOKEN_LENGTH} characters, got {len(self.token.strip())}."
            )

        # ── Presence ─────────────────────────────────────────────────────────
        if self.status not in _VALID_STATUSES:
            errors.append(
                f"STATUS '{self.status}' is not valid. "
                f"Must be one of: {sorted(_VALID_STATUSES)}"
            )

        # ── Backoff range ────────────────────────────────────────────────────
        if self.gateway.backoff_base_ms > self.gateway.backoff_max_ms:
            errors.append(
                f"gateway.backoff_base_ms ({self.gateway.backoff_base_ms}) must not "
                f"exceed gateway.backoff_max_ms ({self.gateway.backoff_max_ms})."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nstayonline startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = _threading.Lock()

_KNOWN_SECTIONS = {"gateway", "client", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. STAYONLINE_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("STAYONLINE_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use. Guarded by _singleton_lock against double loading.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            yaml_data = _load_yaml(_resolve_config_path(None))
            _singleton = Settings(
                **{k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}
            )
    return _singleton
