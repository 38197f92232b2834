"""Task lifecycle state machine and self-rescheduling loop.

:class:`TaskScheduler` owns the single :class:`~trafficsim.engine.state.TaskState`
of the process and is its only writer.  It exposes two commands:

* :meth:`TaskScheduler.start`: implicitly stops any running task, validates
  the request, transitions to Running and launches the task's loop.
* :meth:`TaskScheduler.stop`: idempotent; cancels the running loop's token
  and transitions to Idle.

Loop model
~~~~~~~~~~
Each task runs one :class:`asyncio.Task` that alternates *perform one action*
and *suspend for a random delay*.  The suspend point is
:meth:`CancellationToken.sleep`, which wakes immediately on stop, and the
loop re-checks ``token.cancelled`` after every suspend point and after every
action.  A token is never reused, so a loop belonging to a superseded task
can never arm another delay once its token is cancelled.

Stopping does not abort an action already in flight: a fetch dispatched just
before a stop still completes and its outcome is still logged, but the loop
exits right after it.  Counters in :class:`TaskState` are only updated while
the loop's token is still the state's token, so a late outcome from an old
task never leaks into a new one.

``start`` and ``stop`` are serialised by an :class:`asyncio.Lock` so that
overlapping commands can never interleave their broadcasts.  A new loop
takes the same lock once before its first action, which guarantees the start
announcement is broadcast before any action's log line and that a stop queued
right behind the start wins before the first action.

Modes
~~~~~
* **Server**: each action is one :meth:`FetchExecutor.perform` call; the
  classified result is broadcast as a ``SERVER`` log line.
* **Browser**: each action is one ``start-delegated-loop`` instruction; the
  observers create and tear down replicas themselves.  Stopping a browser
  task additionally broadcasts ``stop-delegated-loop``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Protocol

from trafficsim.core import events
from trafficsim.core.exceptions import TaskConfigError
from trafficsim.core.logging_config import TASK_ID_CTX
from trafficsim.core.models import (
    ActionOutcome,
    ActionResult,
    CommandResult,
    LogLine,
    LogOrigin,
    StatusSnapshot,
    TaskConfig,
    TaskMode,
    parse_task_config,
)
from trafficsim.core.protocol import (
    EventPublisher,
    LogEvent,
    OutboundEvent,
    StartDelegatedLoopEvent,
    StatusPayload,
    StatusUpdateEvent,
    StopDelegatedLoopEvent,
)
from trafficsim.core.settings import Settings
from trafficsim.engine.cancellation import CancellationToken
from trafficsim.engine.delay import next_delay
from trafficsim.engine.state import TaskState

__all__ = ["ActionFetcher", "TaskScheduler"]

logger = logging.getLogger(__name__)


class ActionFetcher(Protocol):
    """The part of :class:`~trafficsim.engine.fetcher.FetchExecutor` the scheduler uses."""

    async def perform(self, url: str) -> ActionResult: ...


class TaskScheduler:
    """Single-task state machine: Idle ⇄ Running.

    Args:
        publisher: Receives every outbound event (log lines, status
            snapshots, delegated-loop instructions).
        fetcher: Performs server-mode actions.
        settings: Supplies fallback values for omitted start parameters.
        state: The task record to own.  A fresh Idle one is created when
            omitted; passing one in is mainly useful for tests.
    """

    def __init__(
        self,
        publisher: EventPublisher,
        fetcher: ActionFetcher,
        settings: Settings,
        *,
        state: TaskState | None = None,
    ) -> None:
        self._publisher = publisher
        self._fetcher = fetcher
        self._settings = settings
        self._state = state if state is not None else TaskState()
        self._lock = asyncio.Lock()
        self._loops: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def snapshot(self) -> StatusSnapshot:
        """Return a read-only snapshot of the current task state."""
        return self._state.snapshot()

    @property
    def loop_tasks(self) -> tuple[asyncio.Task[None], ...]:
        """Loops that have not exited yet, including stopped ones finishing an action."""
        return tuple(self._loops)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(
        self,
        params: object,
        *,
        mode: TaskMode | str | None = None,
    ) -> CommandResult:
        """Start a new task, superseding any running one.

        Args:
            params: Raw start parameters (``url``, ``minDelay``, ``maxDelay``
                and, for browser mode, ``replicaCount`` / ``lifetimeMs``).
                Anything other than a mapping is rejected as invalid.
            mode: Forces the mode; when ``None`` the ``mode`` key of
                *params* decides (default server).

        Returns:
            A successful :class:`CommandResult`, or a failed one when the
            parameters are invalid (the scheduler is then Idle).
        """
        async with self._lock:
            await self._stop_locked()

            try:
                config = parse_task_config(params, mode=mode, settings=self._settings)
            except TaskConfigError as exc:
                logger.warning(
                    "Rejected start request: %s",
                    exc,
                    extra={"event": events.TASK_REJECTED},
                )
                await self._emit_log(LogOrigin.SYSTEM, f"Invalid parameters provided: {exc}")
                return CommandResult(success=False, message=f"Invalid parameters: {exc}")

            token = CancellationToken()
            self._state.enter_running(config, token)
            task_id = self._state.task_id
            handle = asyncio.create_task(
                self._drive(config, token, task_id),
                name=f"trafficsim-task-{task_id}",
            )
            self._loops.add(handle)
            handle.add_done_callback(self._loops.discard)
            self._state.loop_handle = handle

            logger.info(
                "Task %s started: mode=%s url=%s delay=%d–%d ms",
                task_id,
                config.mode,
                config.url,
                config.min_delay_ms,
                config.max_delay_ms,
                extra={"event": events.TASK_START},
            )
            await self._emit_log(LogOrigin.SYSTEM, _start_announcement(config))
            await self._publish(StatusUpdateEvent(data=StatusPayload(is_running=True)))

        if config.mode is TaskMode.BROWSER:
            return CommandResult(success=True, message="Browser task started successfully.")
        return CommandResult(success=True, message="Background task started successfully.")

    async def stop(self) -> CommandResult:
        """Stop the running task.  A no-op success when already Idle."""
        async with self._lock:
            stopped = await self._stop_locked()
        if stopped:
            return CommandResult(success=True, message="Active task stopped.")
        return CommandResult(success=True, message="No active task.")

    async def shutdown(self) -> None:
        """Stop the running task and wait for every loop to exit.

        Unlike :meth:`stop`, in-flight actions are aborted, including those
        of loops already stopped or superseded.  Intended for application
        teardown only.
        """
        await self.stop()
        pending = [handle for handle in self._loops if not handle.done()]
        for handle in pending:
            handle.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # Transitions (caller holds the lock)
    # ------------------------------------------------------------------

    async def _stop_locked(self) -> bool:
        state = self._state
        if not state.is_running:
            return False

        config = state.config
        assert config is not None and state.token is not None
        task_id = state.task_id
        actions, failures = state.actions_completed, state.failures

        state.token.cancel()
        state.enter_idle()

        logger.info(
            "Task %s stopped after %d action(s), %d failed.",
            task_id,
            actions,
            failures,
            extra={"event": events.TASK_STOP},
        )
        summary = f"{actions} action(s)"
        if config.mode is TaskMode.SERVER:
            summary += f", {failures} failed"
        await self._emit_log(LogOrigin.SYSTEM, f"{config.mode} mode task stopped ({summary}).")
        await self._publish(StatusUpdateEvent(data=StatusPayload(is_running=False)))
        if config.mode is TaskMode.BROWSER:
            await self._publish(StopDelegatedLoopEvent())
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _drive(self, config: TaskConfig, token: CancellationToken, task_id: str) -> None:
        TASK_ID_CTX.set(task_id)

        # Wait for the start transition that launched us to finish.
        async with self._lock:
            pass

        started = time.monotonic()
        ordinal = 0
        while not token.cancelled:
            ordinal += 1
            try:
                if config.mode is TaskMode.SERVER:
                    await self._fetch_action(config, token, ordinal, started)
                else:
                    await self._delegate_action(config, token, ordinal)
            except Exception:
                logger.exception(
                    "Unhandled exception in action #%d; continuing.",
                    ordinal,
                    extra={"event": events.ACTION_TICK_ERROR},
                )

            if token.cancelled:
                break
            delay_ms = next_delay(config.min_delay_ms, config.max_delay_ms)
            logger.debug("Next action in %d ms.", delay_ms)
            if not await token.sleep(delay_ms / 1000):
                break

        logger.debug("Task loop exited after %d action(s).", ordinal)

    async def _fetch_action(
        self,
        config: TaskConfig,
        token: CancellationToken,
        ordinal: int,
        started: float,
    ) -> None:
        result = await self._fetcher.perform(config.url)
        outcome = ActionOutcome(ordinal=ordinal, result=result)

        if self._state.token is token:
            self._state.actions_completed = ordinal
            if not result.ok:
                self._state.failures += 1

        await self._emit_log(
            LogOrigin.SERVER_LOOP,
            outcome.describe(config.url, time.monotonic() - started),
            event=events.ACTION_OK if result.ok else events.ACTION_FAILED,
        )

    async def _delegate_action(
        self,
        config: TaskConfig,
        token: CancellationToken,
        ordinal: int,
    ) -> None:
        assert config.replica is not None
        await self._publish(StartDelegatedLoopEvent.from_config(config))

        if self._state.token is token:
            self._state.actions_completed = ordinal

        await self._emit_log(
            LogOrigin.BROWSER_ORCHESTRATION,
            f"[BROWSER #{ordinal}] Instructed observers to open {config.replica.replica_count} "
            f"replica(s) of {config.url}, each closed after {config.replica.lifetime_ms} ms.",
            event=events.DELEGATED_INSTRUCTION,
        )

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def _emit_log(self, origin: LogOrigin, text: str, *, event: str | None = None) -> None:
        line = LogLine(origin=origin, text=text)
        logger.info(line.render(), extra={"event": event} if event else None)
        await self._publish(LogEvent.from_line(line))

    async def _publish(self, event: OutboundEvent) -> None:
        await self._publisher.publish(event)


def _start_announcement(config: TaskConfig) -> str:
    if config.mode is TaskMode.BROWSER:
        assert config.replica is not None
        return (
            f"Browser mode task started: instructing observers to open "
            f"{config.replica.replica_count} replica(s) of {config.url} "
            f"every {config.min_delay_ms}–{config.max_delay_ms} ms."
        )
    return (
        f"Server mode task started for {config.url} "
        f"(delay {config.min_delay_ms}–{config.max_delay_ms} ms)."
    )
