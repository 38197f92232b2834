"""In-memory collaborators shared by the scheduler, gateway and API tests.

* :class:`RecordingPublisher`: captures outbound events.
* :class:`FakeFetcher`: scripted action results, optionally held in flight.
* :class:`FakeObserver`: a subscriber that records what it receives.
* :class:`StalledObserver`: a subscriber that never finishes a send.
* :func:`wait_until`: poll a condition on the running loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from trafficsim.core.models import ActionResult
from trafficsim.core.protocol import LogEvent, OutboundEvent


class RecordingPublisher:
    """Event publisher that just remembers what it was given."""

    def __init__(self) -> None:
        self.events: list[OutboundEvent] = []

    async def publish(self, event: OutboundEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.event for e in self.events]

    def of_type(self, event_name: str) -> list[OutboundEvent]:
        return [e for e in self.events if e.event == event_name]

    def log_texts(self) -> list[str]:
        return [e.data.text for e in self.events if isinstance(e, LogEvent)]


class FakeFetcher:
    """Scripted stand-in for :class:`~trafficsim.engine.fetcher.FetchExecutor`.

    Args:
        result: Returned by every call unless *side_effect* is set.
        side_effect: Called with the 1-based call number; may return a
            result or raise.
        gate: When set, each call waits for the event before returning,
            which keeps the action "in flight".
    """

    def __init__(
        self,
        result: ActionResult | None = None,
        *,
        side_effect: Callable[[int], ActionResult] | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.result = result or ActionResult.success(200)
        self.side_effect = side_effect
        self.gate = gate
        self.calls: list[str] = []

    async def perform(self, url: str) -> ActionResult:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.side_effect is not None:
            return self.side_effect(len(self.calls))
        return self.result


class FakeObserver:
    """Subscriber that records every event; optionally fails on send."""

    def __init__(self, name: str = "obs", *, fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.received: list[OutboundEvent] = []

    def __repr__(self) -> str:
        return f"<FakeObserver {self.name}>"

    async def send(self, event: OutboundEvent) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.received.append(event)

    def log_texts(self) -> list[str]:
        return [e.data.text for e in self.received if isinstance(e, LogEvent)]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* on the running loop until it holds or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


class StalledObserver(FakeObserver):
    """Subscriber whose ``send`` never completes, like a peer that stopped reading."""

    async def send(self, event: OutboundEvent) -> None:
        await asyncio.Event().wait()
