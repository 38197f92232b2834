"""Task lifecycle, scheduling loop, and the actions it performs.

Public API
----------
* :class:`~trafficsim.engine.scheduler.TaskScheduler`: the single-task
  state machine (start / stop / self-rescheduling loop).
* :class:`~trafficsim.engine.state.TaskState`: the task record the
  scheduler owns.
* :class:`~trafficsim.engine.fetcher.FetchExecutor`: classified outbound
  GETs for server mode.
* :func:`~trafficsim.engine.delay.next_delay`: random inclusive delay.
* :class:`~trafficsim.engine.cancellation.CancellationToken`: cancellable
  suspend point used by task loops.
"""

from trafficsim.engine.cancellation import CancellationToken
from trafficsim.engine.delay import next_delay
from trafficsim.engine.fetcher import FetchExecutor
from trafficsim.engine.scheduler import ActionFetcher, TaskScheduler
from trafficsim.engine.state import TaskState, TaskStatus

__all__ = [
    "ActionFetcher",
    "CancellationToken",
    "FetchExecutor",
    "TaskScheduler",
    "TaskState",
    "TaskStatus",
    "next_delay",
]
