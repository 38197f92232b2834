"""Unit tests for :mod:`trafficsim.gateway`.

Coverage
--------
* :class:`~trafficsim.gateway.broadcaster.Broadcaster` fan-out, duplicate
  subscription, and dropping of failing or stalled subscribers.
* :class:`~trafficsim.gateway.gateway.BroadcastGateway` connect snapshot,
  command routing, client-log relay and malformed-message handling.
* Every connected observer sees the same ordered event stream.
* An observer that stops reading never blocks commands or the task loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator

import pytest

from tests.support import FakeFetcher, FakeObserver, StalledObserver, wait_until
from trafficsim.core import events
from trafficsim.core.models import LogLine, LogOrigin
from trafficsim.core.protocol import LogEvent, StatusUpdateEvent
from trafficsim.core.settings import Settings
from trafficsim.engine.scheduler import TaskScheduler
from trafficsim.gateway import Broadcaster, BroadcastGateway

logger = logging.getLogger(__name__)

_URL = "https://example.com/"


# ---------------------------------------------------------------------------
# Fixtures / helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def broadcaster() -> Broadcaster:
    return Broadcaster()


@pytest.fixture()
async def scheduler(
    broadcaster: Broadcaster,
    fetcher: FakeFetcher,
    settings: Settings,
) -> AsyncIterator[TaskScheduler]:
    scheduler = TaskScheduler(broadcaster, fetcher, settings)
    yield scheduler
    await scheduler.shutdown()


@pytest.fixture()
def gateway(scheduler: TaskScheduler, broadcaster: Broadcaster) -> BroadcastGateway:
    return BroadcastGateway(scheduler, broadcaster)


def _log(text: str = "hello") -> LogEvent:
    return LogEvent.from_line(LogLine(origin=LogOrigin.SYSTEM, text=text))


def _start_message(**data: object) -> str:
    payload = {"url": _URL, "minDelay": 10, "maxDelay": 20, **data}
    return json.dumps({"event": "start-traffic", "data": payload})


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------


class TestBroadcaster:
    async def test_publish_reaches_every_subscriber(self, broadcaster: Broadcaster) -> None:
        first, second = FakeObserver("a"), FakeObserver("b")
        broadcaster.subscribe(first)
        broadcaster.subscribe(second)

        event = _log()
        await broadcaster.publish(event)

        assert first.received == [event]
        assert second.received == [event]

    async def test_publish_without_subscribers_is_noop(self, broadcaster: Broadcaster) -> None:
        await broadcaster.publish(_log())
        assert len(broadcaster) == 0

    def test_subscribe_is_idempotent(self, broadcaster: Broadcaster) -> None:
        observer = FakeObserver()
        broadcaster.subscribe(observer)
        broadcaster.subscribe(observer)
        assert broadcaster.subscribers == (observer,)

    def test_unsubscribe_unknown_is_ignored(self, broadcaster: Broadcaster) -> None:
        broadcaster.unsubscribe(FakeObserver())
        assert len(broadcaster) == 0

    async def test_failing_subscriber_dropped_others_still_served(
        self,
        broadcaster: Broadcaster,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        healthy, broken = FakeObserver("ok"), FakeObserver("gone", fail=True)
        broadcaster.subscribe(broken)
        broadcaster.subscribe(healthy)

        with caplog.at_level(logging.WARNING, logger="trafficsim.gateway.broadcaster"):
            await broadcaster.publish(_log("one"))
        await broadcaster.publish(_log("two"))

        assert broadcaster.subscribers == (healthy,)
        assert len(healthy.received) == 2
        assert any(
            getattr(r, "event", None) == events.OBSERVER_DROPPED for r in caplog.records
        )

    async def test_send_to_reports_failure(self, broadcaster: Broadcaster) -> None:
        broken = FakeObserver(fail=True)
        broadcaster.subscribe(broken)

        assert await broadcaster.send_to(broken, _log()) is False
        assert len(broadcaster) == 0

    async def test_stalled_subscriber_dropped_after_deadline(
        self,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        broadcaster = Broadcaster(send_timeout_s=0.05)
        healthy, stalled = FakeObserver("ok"), StalledObserver("stalled")
        broadcaster.subscribe(stalled)
        broadcaster.subscribe(healthy)

        with caplog.at_level(logging.WARNING, logger="trafficsim.gateway.broadcaster"):
            await asyncio.wait_for(broadcaster.publish(_log()), timeout=1.0)

        assert broadcaster.subscribers == (healthy,)
        assert len(healthy.received) == 1
        dropped = [
            r for r in caplog.records if getattr(r, "event", None) == events.OBSERVER_DROPPED
        ]
        assert len(dropped) == 1
        assert "no acknowledgement within 0.05 s" in dropped[0].getMessage()

    async def test_send_to_stalled_subscriber_times_out(self) -> None:
        broadcaster = Broadcaster(send_timeout_s=0.05)
        stalled = StalledObserver()
        broadcaster.subscribe(stalled)

        assert await asyncio.wait_for(broadcaster.send_to(stalled, _log()), timeout=1.0) is False
        assert len(broadcaster) == 0


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------


class TestConnect:
    async def test_connect_sends_idle_snapshot(self, gateway: BroadcastGateway) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        assert gateway.observer_count == 1
        assert len(observer.received) == 1
        snapshot = observer.received[0]
        assert isinstance(snapshot, StatusUpdateEvent)
        assert snapshot.data.is_running is False

    async def test_connect_while_running_sends_running_snapshot(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
    ) -> None:
        await scheduler.start({"url": _URL, "minDelay": 10, "maxDelay": 20})

        late = FakeObserver("late")
        await gateway.connect(late)

        first = late.received[0]
        assert isinstance(first, StatusUpdateEvent)
        assert first.data.is_running is True

    async def test_no_history_replayed(self, gateway: BroadcastGateway, fetcher: FakeFetcher) -> None:
        early = FakeObserver("early")
        await gateway.connect(early)
        await gateway.handle(early, _start_message())
        await wait_until(lambda: len(fetcher.calls) >= 2)

        late = FakeObserver("late")
        await gateway.connect(late)

        assert len(late.received) == 1

    async def test_disconnect(self, gateway: BroadcastGateway) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)
        gateway.disconnect(observer)
        gateway.disconnect(observer)
        assert gateway.observer_count == 0


class TestHandle:
    async def test_start_and_stop_routed_to_scheduler(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        started = await gateway.handle(observer, _start_message())
        assert started is not None and started.success
        assert scheduler.is_running

        stopped = await gateway.handle(observer, '{"event": "stop-traffic", "data": {}}')
        assert stopped is not None and stopped.message == "Active task stopped."
        assert not scheduler.is_running

    async def test_browser_start_over_channel(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        result = await gateway.handle(
            observer,
            _start_message(mode="browser", replicaCount=3, lifetimeMs=1000),
        )

        assert result is not None
        assert result.message == "Browser task started successfully."
        await wait_until(
            lambda: any(e.event == "start-delegated-loop" for e in observer.received)
        )

    async def test_invalid_start_is_reported_as_log(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        result = await gateway.handle(observer, _start_message(minDelay="later"))

        assert result is not None and result.success is False
        assert not scheduler.is_running
        assert any("Invalid parameters provided" in t for t in observer.log_texts())

    async def test_client_log_rebroadcast_to_everyone(self, gateway: BroadcastGateway) -> None:
        sender, other = FakeObserver("sender"), FakeObserver("other")
        await gateway.connect(sender)
        await gateway.connect(other)

        result = await gateway.handle(
            sender, '{"event": "client-log", "data": {"text": "replica 1 loaded"}}'
        )

        assert result is None
        for observer in (sender, other):
            assert observer.log_texts()[-1].endswith("CLIENT - replica 1 loaded")

    async def test_client_log_bare_string(self, gateway: BroadcastGateway) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        await gateway.handle(observer, {"event": "client-log", "data": "replica closed"})

        assert observer.log_texts()[-1].endswith("CLIENT - replica closed")

    @pytest.mark.parametrize(
        "message",
        [
            "{not json",
            '"just a string"',
            '{"event": "reboot-server"}',
            '{"event": "client-log"}',
        ],
    )
    async def test_malformed_message_ignored(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
        message: str,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        with caplog.at_level(logging.WARNING, logger="trafficsim.gateway.gateway"):
            result = await gateway.handle(observer, message)

        assert result is None
        assert not scheduler.is_running
        assert len(observer.received) == 1
        assert gateway.observer_count == 1
        assert any(
            getattr(r, "event", None) == events.COMMAND_REJECTED for r in caplog.records
        )


class TestFanOut:
    async def test_observers_see_identical_ordered_stream(
        self,
        gateway: BroadcastGateway,
        fetcher: FakeFetcher,
    ) -> None:
        first, second = FakeObserver("a"), FakeObserver("b")
        await gateway.connect(first)
        await gateway.connect(second)

        await gateway.handle(first, _start_message())
        await wait_until(lambda: len(fetcher.calls) >= 3)
        await gateway.handle(second, '{"event": "stop-traffic"}')

        assert [e.event for e in first.received] == [e.event for e in second.received]
        assert first.log_texts() == second.log_texts()
        assert first.received[-1] == second.received[-1]

    async def test_task_survives_all_observers_leaving(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
        fetcher: FakeFetcher,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)
        await gateway.handle(observer, _start_message())
        gateway.disconnect(observer)

        calls = len(fetcher.calls)
        await wait_until(lambda: len(fetcher.calls) >= calls + 2)
        assert scheduler.is_running

    async def test_dropped_observer_does_not_stop_task(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
        fetcher: FakeFetcher,
    ) -> None:
        healthy = FakeObserver("ok")
        await gateway.connect(healthy)
        await gateway.handle(healthy, _start_message())

        broken = FakeObserver("flaky")
        await gateway.connect(broken)
        broken.fail = True

        await wait_until(lambda: gateway.observer_count == 1)
        await asyncio.sleep(0.03)
        assert scheduler.is_running
        assert any(" SERVER - " in t for t in healthy.log_texts())


class TestCommandEntryPoints:
    async def test_start_stop_and_snapshot(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
        fetcher: FakeFetcher,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        started = await gateway.start({"url": _URL, "minDelay": 10, "maxDelay": 20}, mode="server")
        assert started.success is True
        assert gateway.snapshot() == scheduler.snapshot()
        assert gateway.snapshot().is_running is True
        await wait_until(lambda: len(fetcher.calls) >= 1)

        stopped = await gateway.stop()
        assert stopped.message == "Active task stopped."
        assert gateway.snapshot().is_running is False
        flags = [e.data.is_running for e in observer.received if isinstance(e, StatusUpdateEvent)]
        assert flags == [False, True, False]

    async def test_non_mapping_start_is_rejected(
        self,
        gateway: BroadcastGateway,
        scheduler: TaskScheduler,
    ) -> None:
        observer = FakeObserver()
        await gateway.connect(observer)

        result = await gateway.start([1, 2, 3])

        assert result.success is False
        assert "must be a JSON object" in result.message
        assert not scheduler.is_running
        assert any("Invalid parameters provided" in t for t in observer.log_texts())


class TestStalledObserver:
    @pytest.fixture()
    def broadcaster(self) -> Broadcaster:
        return Broadcaster(send_timeout_s=0.05)

    async def test_stop_returns_despite_stalled_observer(
        self,
        gateway: BroadcastGateway,
        broadcaster: Broadcaster,
        scheduler: TaskScheduler,
        fetcher: FakeFetcher,
    ) -> None:
        healthy = FakeObserver("ok")
        await gateway.connect(healthy)
        await gateway.handle(healthy, _start_message())
        await wait_until(lambda: len(fetcher.calls) >= 1)

        broadcaster.subscribe(StalledObserver("stalled"))
        result = await asyncio.wait_for(scheduler.stop(), timeout=1.0)

        assert result.message == "Active task stopped."
        assert not scheduler.is_running
        assert broadcaster.subscribers == (healthy,)
        last = healthy.received[-1]
        assert isinstance(last, StatusUpdateEvent) and last.data.is_running is False

    async def test_commands_keep_working_after_stall(
        self,
        gateway: BroadcastGateway,
        broadcaster: Broadcaster,
        scheduler: TaskScheduler,
    ) -> None:
        broadcaster.subscribe(StalledObserver())

        for _ in range(2):
            started = await asyncio.wait_for(gateway.start({"url": _URL}), timeout=1.0)
            assert started.success is True
            stopped = await asyncio.wait_for(gateway.stop(), timeout=1.0)
            assert stopped.message == "Active task stopped."
        assert len(broadcaster) == 0

    async def test_task_keeps_ticking_with_stalled_observer(
        self,
        gateway: BroadcastGateway,
        broadcaster: Broadcaster,
        scheduler: TaskScheduler,
        fetcher: FakeFetcher,
    ) -> None:
        await gateway.start({"url": _URL, "minDelay": 10, "maxDelay": 20})
        broadcaster.subscribe(StalledObserver())

        calls = len(fetcher.calls)
        await wait_until(lambda: len(fetcher.calls) >= calls + 3)
        assert scheduler.is_running
        assert len(broadcaster) == 0

    async def test_connect_does_not_hang(self, gateway: BroadcastGateway) -> None:
        await asyncio.wait_for(gateway.connect(StalledObserver()), timeout=1.0)
        assert gateway.observer_count == 0
