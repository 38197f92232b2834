"""Trafficsim application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name (e.g.
``FETCH_TIMEOUT_S`` → ``fetch_timeout_s``).  ``PORT`` is honoured as-is so the
server can be dropped onto hosting platforms that inject it.

Typical usage::

    from trafficsim.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.fetch_timeout_s)        # 5.0
"""

from __future__ import annotations

import logging

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trafficsim.core.exceptions import ConfigError

__all__ = ["Settings", "load_settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    The ``default_*`` fields are fallbacks applied when a start request
    omits the corresponding parameter.  They never override a value the
    caller supplied.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="Interface to bind.")
    port: int = Field(
        default=3000,
        ge=1,
        le=65535,
        description="TCP port for the HTTP/WebSocket server.",
    )

    # ------------------------------------------------------------------
    # Outbound fetches
    # ------------------------------------------------------------------
    fetch_timeout_s: float = Field(
        default=5.0,
        gt=0.0,
        description="Timeout applied to every outbound GET, in seconds.",
    )
    fetch_max_attempts: int = Field(
        default=1,
        ge=1,
        description=(
            "Total attempts per action (1 = no retries).  Retries cover "
            "transport errors and 5xx responses only."
        ),
    )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    observer_send_timeout_s: float = Field(
        default=5.0,
        gt=0.0,
        description=(
            "Deadline for delivering one event to one observer, in seconds.  "
            "An observer that misses it is disconnected."
        ),
    )

    # ------------------------------------------------------------------
    # Start-request fallbacks
    # ------------------------------------------------------------------
    default_min_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Min delay between actions when a start request omits it.",
    )
    default_max_delay_ms: int = Field(
        default=5000,
        ge=0,
        description="Max delay between actions when a start request omits it.",
    )
    default_replica_count: int = Field(
        default=1,
        ge=1,
        description="Replicas per instruction in browser mode when omitted.",
    )
    default_replica_lifetime_ms: int = Field(
        default=4000,
        ge=1,
        description="Replica lifetime in browser mode when omitted.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_delay_defaults(self) -> Settings:
        """Ensure min ≤ max for the fallback delay bounds."""
        if self.default_min_delay_ms > self.default_max_delay_ms:
            raise ValueError(
                f"default_min_delay_ms ({self.default_min_delay_ms}) "
                f"> default_max_delay_ms ({self.default_max_delay_ms})"
            )
        return self


def load_settings(**overrides: object) -> Settings:
    """Load :class:`Settings`, applying explicit *overrides* on top of env/.env.

    Raises:
        ConfigError: If the resulting configuration is invalid.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
