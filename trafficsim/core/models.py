"""Trafficsim core domain models.

Defines the task configuration accepted by the scheduler, the transient
per-tick outcome types, the observer-facing :class:`LogLine`, and the
snapshot / result shapes published outward.

All outward-facing models serialise with camelCase keys (``isRunning``,
``actionsCompleted``) so they can be handed to the transport layer as-is.

Typical usage::

    from trafficsim.core.models import TaskMode, parse_task_config

    config = parse_task_config(
        {"url": "https://example.com", "minDelay": 500, "maxDelay": 1500},
        mode=TaskMode.SERVER,
        settings=settings,
    )
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from trafficsim.core.exceptions import TaskConfigError
from trafficsim.core.settings import Settings

__all__ = [
    "TaskMode",
    "LogOrigin",
    "ReplicaSettings",
    "TaskConfig",
    "parse_task_config",
    "ActionResult",
    "ActionOutcome",
    "LogLine",
    "StatusSnapshot",
    "CommandResult",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TaskMode(StrEnum):
    """How a task performs its repeated action.

    ``SERVER``: the scheduler fetches the URL itself.
    ``BROWSER``: observers are instructed to create short-lived replicas.
    """

    SERVER = "server"
    BROWSER = "browser"


class LogOrigin(StrEnum):
    """Tag rendered at the front of every broadcast log line."""

    SYSTEM = "SYSTEM"
    SERVER_LOOP = "SERVER"
    BROWSER_ORCHESTRATION = "BROWSER"
    REMOTE_OBSERVER = "CLIENT"


# ---------------------------------------------------------------------------
# Task configuration
# ---------------------------------------------------------------------------


class ReplicaSettings(BaseModel):
    """Browser-mode parameters: how many replicas per instruction, how long each lives."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    replica_count: int = Field(..., gt=0)
    lifetime_ms: int = Field(..., gt=0)


class TaskConfig(BaseModel):
    """Immutable description of one task.

    A new start always builds a new instance; a running task's config is
    never modified in place.

    Attributes:
        mode: Server-driven fetches or browser-delegated replicas.
        url: Target URL (non-empty after stripping whitespace).
        min_delay_ms: Lower bound of the random pause between actions.
        max_delay_ms: Upper bound of the random pause; ``>= min_delay_ms``.
        replica: Present only for :attr:`TaskMode.BROWSER`.
    """

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    mode: TaskMode = TaskMode.SERVER
    url: str = Field(..., min_length=1)
    min_delay_ms: int = Field(..., ge=0, alias="minDelay")
    max_delay_ms: int = Field(..., ge=0, alias="maxDelay")
    replica: ReplicaSettings | None = None

    @model_validator(mode="after")
    def _check_consistency(self) -> TaskConfig:
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError(
                f"maxDelay ({self.max_delay_ms}) must be >= minDelay ({self.min_delay_ms})"
            )
        if self.mode is TaskMode.BROWSER and self.replica is None:
            raise ValueError("browser mode requires replicaCount and lifetimeMs")
        return self


#: Accepted spellings per canonical field.  ``iframeCount`` / ``closeDelay``
#: are the names older front-ends send.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "minDelay": ("minDelay", "min_delay", "min_delay_ms"),
    "maxDelay": ("maxDelay", "max_delay", "max_delay_ms"),
    "replicaCount": ("replicaCount", "replica_count", "iframeCount"),
    "lifetimeMs": ("lifetimeMs", "lifetime_ms", "closeDelay"),
}


def _lookup(params: Mapping[str, Any], field: str, default: Any) -> Any:
    """Return the first non-blank value among *field*'s aliases, else *default*."""
    for name in _FIELD_ALIASES[field]:
        value = params.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        return value
    return default


def _format_validation_error(exc: ValidationError) -> str:
    parts: list[str] = []
    for err in exc.errors():
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def parse_task_config(
    params: object,
    *,
    mode: TaskMode | str | None = None,
    settings: Settings,
) -> TaskConfig:
    """Build a :class:`TaskConfig` from a loosely-typed start request.

    Numeric strings are coerced; missing or blank numeric fields fall back
    to the ``default_*`` values in *settings*.

    Args:
        params: Raw request payload (camelCase or snake_case keys).  Must be
            a mapping; anything else is rejected.
        mode: Forces the task mode.  When ``None`` the payload's ``mode``
            key is used, defaulting to server mode.
        settings: Source of the fallback values.

    Returns:
        A validated, frozen :class:`TaskConfig`.

    Raises:
        TaskConfigError: If the parameters do not describe a valid task.
    """
    if not isinstance(params, Mapping):
        raise TaskConfigError(
            f"parameters must be a JSON object, got {type(params).__name__}"
        )
    resolved_mode = mode if mode is not None else params.get("mode") or TaskMode.SERVER
    raw: dict[str, Any] = {
        "mode": resolved_mode,
        "url": params.get("url") or "",
        "minDelay": _lookup(params, "minDelay", settings.default_min_delay_ms),
        "maxDelay": _lookup(params, "maxDelay", settings.default_max_delay_ms),
    }
    if str(resolved_mode) == TaskMode.BROWSER:
        raw["replica"] = {
            "replicaCount": _lookup(params, "replicaCount", settings.default_replica_count),
            "lifetimeMs": _lookup(params, "lifetimeMs", settings.default_replica_lifetime_ms),
        }

    try:
        return TaskConfig.model_validate(raw)
    except ValidationError as exc:
        raise TaskConfigError(_format_validation_error(exc)) from exc


# ---------------------------------------------------------------------------
# Per-tick outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionResult:
    """Classified outcome of one outbound fetch.

    Attributes:
        ok: ``True`` for a 2xx response.
        status_code: HTTP status, or ``None`` when no response arrived.
        reason: Failure description; ``None`` on success.
    """

    ok: bool
    status_code: int | None = None
    reason: str | None = None

    @classmethod
    def success(cls, status_code: int) -> ActionResult:
        return cls(ok=True, status_code=status_code)

    @classmethod
    def failure(cls, reason: str, status_code: int | None = None) -> ActionResult:
        return cls(ok=False, status_code=status_code, reason=reason)


@dataclass(frozen=True)
class ActionOutcome:
    """One loop tick's result: which action it was and how it went."""

    ordinal: int
    result: ActionResult

    def describe(self, url: str, elapsed_s: float) -> str:
        """Render the text of the ServerLoop log line for this tick."""
        prefix = f"[SERVER #{self.ordinal}]"
        if self.result.ok:
            body = f"SUCCESS {self.result.status_code} - {url}"
        else:
            status = self.result.status_code if self.result.status_code is not None else "N/A"
            body = f"ERROR {status} - {self.result.reason}"
        return f"{prefix} {body} (+{elapsed_s:.2f}s)"


# ---------------------------------------------------------------------------
# Observer-facing shapes
# ---------------------------------------------------------------------------


class LogLine(BaseModel):
    """One append-only line for observers' log views.

    Newlines in *text* are collapsed to spaces so a line is always a line.
    """

    model_config = ConfigDict(frozen=True)

    origin: LogOrigin
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator("text")
    @classmethod
    def _single_line(cls, v: str) -> str:
        return " ".join(v.splitlines()).strip()

    def render(self) -> str:
        """Return ``[HH:MM:SS] TAG - text``."""
        return f"[{self.timestamp:%H:%M:%S}] {self.origin} - {self.text}"


class StatusSnapshot(BaseModel):
    """Read-only view of the task state published to observers and the API."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    is_running: bool
    mode: TaskMode | None = None
    url: str = ""
    actions_completed: int = 0
    failures: int = 0
    started_at: datetime | None = None


class CommandResult(BaseModel):
    """Outcome of a start or stop command."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
