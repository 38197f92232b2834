"""Trafficsim exception taxonomy.

Every custom exception inherits from :class:`TrafficSimError`:

    TrafficSimError
    ├── ConfigError
    ├── TaskConfigError
    ├── FetchError
    └── ProtocolError

None of these is fatal to the process.  :class:`TaskConfigError` is turned
into a failed command result by the scheduler, :class:`FetchError` never
leaves the fetch executor, and :class:`ProtocolError` makes the gateway drop
one inbound message.

Usage:

    from trafficsim.core.exceptions import FetchError

    raise FetchError(url, "HTTP 404", status_code=404)
"""

from __future__ import annotations

__all__ = [
    "TrafficSimError",
    "ConfigError",
    "TaskConfigError",
    "FetchError",
    "ProtocolError",
]


class TrafficSimError(Exception):
    """Root exception for all Trafficsim errors."""


class ConfigError(TrafficSimError):
    """Raised when the process configuration is invalid or incomplete."""


class TaskConfigError(TrafficSimError):
    """Raised when start parameters do not describe a valid task.

    Examples:
        - Empty URL.
        - Negative ``minDelay`` or ``maxDelay < minDelay``.
        - Browser mode with a non-positive replica count or lifetime.
    """


class FetchError(TrafficSimError):
    """Raised inside the fetch executor when one outbound GET fails.

    Args:
        url: The requested URL.
        message: Human-readable reason.
        status_code: HTTP status of the response, if one was received.
    """

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        self.url = url
        self.reason = message
        self.status_code = status_code
        super().__init__(f"{url}: {message}")


class ProtocolError(TrafficSimError):
    """Raised when an inbound push-channel message does not match any schema."""
