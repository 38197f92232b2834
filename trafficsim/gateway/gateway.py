"""Broadcast gateway between observers and the scheduler.

Inbound, it validates each push-channel message against the command union
and routes it:

* ``start-traffic`` → :meth:`TaskScheduler.start`
* ``stop-traffic``  → :meth:`TaskScheduler.stop`
* ``client-log``    → rebroadcast to every observer, sender included,
  tagged ``CLIENT``.

The request/response API uses the same :meth:`BroadcastGateway.start`,
:meth:`BroadcastGateway.stop` and :meth:`BroadcastGateway.snapshot` entry
points, so both command surfaces reach the scheduler the same way.

Outbound, the scheduler publishes straight into the gateway's
:class:`~trafficsim.gateway.broadcaster.Broadcaster`; the gateway adds only
the status snapshot every observer receives on connect.  No log history is
replayed to late joiners.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from trafficsim.core import events
from trafficsim.core.exceptions import ProtocolError
from trafficsim.core.models import CommandResult, LogLine, LogOrigin, StatusSnapshot, TaskMode
from trafficsim.core.protocol import (
    ClientLogCommand,
    LogEvent,
    StartTrafficCommand,
    StatusUpdateEvent,
    StopTrafficCommand,
    parse_inbound,
)
from trafficsim.engine.scheduler import TaskScheduler
from trafficsim.gateway.broadcaster import Broadcaster, Subscriber

__all__ = ["BroadcastGateway"]

logger = logging.getLogger(__name__)


class BroadcastGateway:
    """Routes observer commands to the scheduler and events to observers.

    Args:
        scheduler: The task scheduler commands are delegated to.
        broadcaster: The registry the scheduler publishes into.
    """

    def __init__(self, scheduler: TaskScheduler, broadcaster: Broadcaster) -> None:
        self._scheduler = scheduler
        self._broadcaster = broadcaster

    @property
    def observer_count(self) -> int:
        return len(self._broadcaster)

    def snapshot(self) -> StatusSnapshot:
        return self._scheduler.snapshot()

    async def start(
        self,
        params: object,
        *,
        mode: TaskMode | str | None = None,
    ) -> CommandResult:
        """Start a task; see :meth:`TaskScheduler.start`."""
        return await self._scheduler.start(params, mode=mode)

    async def stop(self) -> CommandResult:
        return await self._scheduler.stop()

    async def connect(self, observer: Subscriber) -> None:
        """Register *observer* and send it the current status snapshot."""
        snapshot = StatusUpdateEvent.from_snapshot(self._scheduler.snapshot())
        self._broadcaster.subscribe(observer)
        logger.info(
            "Observer %r connected (%d total).",
            observer,
            len(self._broadcaster),
            extra={"event": events.OBSERVER_CONNECT},
        )
        await self._broadcaster.send_to(observer, snapshot)

    def disconnect(self, observer: Subscriber) -> None:
        self._broadcaster.unsubscribe(observer)
        logger.info(
            "Observer %r disconnected (%d remaining).",
            observer,
            len(self._broadcaster),
            extra={"event": events.OBSERVER_DISCONNECT},
        )

    async def handle(
        self,
        observer: Subscriber,
        message: str | bytes | Mapping[str, Any],
    ) -> CommandResult | None:
        """Validate and dispatch one inbound message from *observer*.

        Returns:
            The scheduler's result for start/stop commands; ``None`` for
            log relays and for messages rejected as malformed.
        """
        try:
            command = parse_inbound(message)
        except ProtocolError as exc:
            logger.warning(
                "Ignoring malformed message from %r: %s",
                observer,
                exc,
                extra={"event": events.COMMAND_REJECTED},
            )
            return None

        if isinstance(command, StartTrafficCommand):
            logger.debug("start-traffic from %r: %s", observer, command.data)
            return await self.start(command.data)
        if isinstance(command, StopTrafficCommand):
            logger.debug("stop-traffic from %r", observer)
            return await self.stop()
        if isinstance(command, ClientLogCommand):
            await self.relay_remote_log(command.data.text)
        return None

    async def relay_remote_log(self, text: str) -> None:
        """Rebroadcast an observer-originated line to every observer."""
        line = LogLine(origin=LogOrigin.REMOTE_OBSERVER, text=text)
        logger.info(line.render(), extra={"event": events.REMOTE_LOG})
        await self._broadcaster.publish(LogEvent.from_line(line))
