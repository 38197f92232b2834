"""Structured log event name constants.

Every key transition emits a process log record with an ``event`` field
(passed via ``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode it
surfaces as ``extra.event``; in text mode the message is self-describing.

Usage example::

    import logging
    from trafficsim.core import events

    logger = logging.getLogger(__name__)

    logger.info("Task started", extra={"event": events.TASK_START})
"""

from __future__ import annotations

__all__ = [
    # Task lifecycle
    "TASK_START",
    "TASK_STOP",
    "TASK_REJECTED",
    # Loop ticks
    "ACTION_OK",
    "ACTION_FAILED",
    "ACTION_TICK_ERROR",
    "DELEGATED_INSTRUCTION",
    # Observers
    "OBSERVER_CONNECT",
    "OBSERVER_DISCONNECT",
    "OBSERVER_DROPPED",
    "REMOTE_LOG",
    "COMMAND_REJECTED",
]

# ---------------------------------------------------------------------------
# Task lifecycle
# ---------------------------------------------------------------------------

#: A start request was accepted and the task entered Running.
TASK_START: str = "TASK_START"

#: The running task was stopped (explicitly or by supersession).
TASK_STOP: str = "TASK_STOP"

#: A start request failed validation; the scheduler stays Idle.
TASK_REJECTED: str = "TASK_REJECTED"

# ---------------------------------------------------------------------------
# Loop ticks
# ---------------------------------------------------------------------------

#: One server-driven fetch completed with a 2xx status.
ACTION_OK: str = "ACTION_OK"

#: One server-driven fetch failed (transport error, timeout, HTTP error).
ACTION_FAILED: str = "ACTION_FAILED"

#: An unexpected exception escaped a loop tick and was absorbed.
ACTION_TICK_ERROR: str = "ACTION_TICK_ERROR"

#: A start-delegated-loop instruction was broadcast.
DELEGATED_INSTRUCTION: str = "DELEGATED_INSTRUCTION"

# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------

#: An observer joined the push channel.
OBSERVER_CONNECT: str = "OBSERVER_CONNECT"

#: An observer left the push channel.
OBSERVER_DISCONNECT: str = "OBSERVER_DISCONNECT"

#: Delivery to an observer failed; it was removed from the registry.
OBSERVER_DROPPED: str = "OBSERVER_DROPPED"

#: An observer relayed a log line for rebroadcast.
REMOTE_LOG: str = "REMOTE_LOG"

#: An inbound message did not match any known command schema.
COMMAND_REJECTED: str = "COMMAND_REJECTED"
