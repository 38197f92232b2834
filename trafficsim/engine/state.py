"""Mutable record of the single task the scheduler owns.

Only :class:`~trafficsim.engine.scheduler.TaskScheduler` writes to a
:class:`TaskState`; everything else reads :meth:`TaskState.snapshot`.

Invariant: ``loop_handle`` (the running loop's :class:`asyncio.Task`) and
``token`` are set if and only if ``status`` is ``RUNNING``.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from trafficsim.core.models import StatusSnapshot, TaskConfig, TaskMode
from trafficsim.engine.cancellation import CancellationToken

__all__ = ["TaskStatus", "TaskState"]


class TaskStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class TaskState:
    """The process-wide task record.

    Attributes:
        status: ``IDLE`` or ``RUNNING``.
        config: Configuration of the running task; ``None`` while idle.
        task_id: Short hex correlation ID of the running task.
        actions_completed: Ticks completed by the running task.
        failures: Ticks whose action failed.
        started_at: Wall-clock start time of the running task.
        token: Cancellation token of the running task's loop.
        loop_handle: The asyncio task driving the loop.
    """

    status: TaskStatus = TaskStatus.IDLE
    config: TaskConfig | None = None
    task_id: str = ""
    actions_completed: int = 0
    failures: int = 0
    started_at: datetime | None = None
    token: CancellationToken | None = None
    loop_handle: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self.status is TaskStatus.RUNNING

    @property
    def mode(self) -> TaskMode | None:
        return self.config.mode if self.config is not None else None

    def enter_running(self, config: TaskConfig, token: CancellationToken) -> None:
        """Transition Idle → Running with fresh counters."""
        self.status = TaskStatus.RUNNING
        self.config = config
        self.task_id = uuid.uuid4().hex[:8]
        self.actions_completed = 0
        self.failures = 0
        self.started_at = datetime.now(UTC)
        self.token = token

    def enter_idle(self) -> None:
        """Transition back to Idle, discarding everything about the old task."""
        self.status = TaskStatus.IDLE
        self.config = None
        self.task_id = ""
        self.actions_completed = 0
        self.failures = 0
        self.started_at = None
        self.token = None
        self.loop_handle = None

    def snapshot(self) -> StatusSnapshot:
        return StatusSnapshot(
            is_running=self.is_running,
            mode=self.mode,
            url=self.config.url if self.config is not None else "",
            actions_completed=self.actions_completed,
            failures=self.failures,
            started_at=self.started_at,
        )
