"""Core domain models, settings, logging configuration, and shared utilities."""

from trafficsim.core.exceptions import (
    ConfigError,
    FetchError,
    ProtocolError,
    TaskConfigError,
    TrafficSimError,
)
from trafficsim.core.logging_config import JsonFormatter, configure_logging
from trafficsim.core.models import (
    ActionOutcome,
    ActionResult,
    CommandResult,
    LogLine,
    LogOrigin,
    ReplicaSettings,
    StatusSnapshot,
    TaskConfig,
    TaskMode,
    parse_task_config,
)
from trafficsim.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Settings
    "Settings",
    # Domain models
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
    # Exceptions
    "TrafficSimError",
    "ConfigError",
    "TaskConfigError",
    "FetchError",
    "ProtocolError",
]
