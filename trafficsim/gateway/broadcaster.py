"""Publish/subscribe registry for outbound events.

The transport layer decides when an observer joins or leaves; this module
only keeps the list of currently subscribed observers and delivers each
published event to all of them concurrently.  A subscriber whose delivery
fails, or does not finish within the send deadline, is dropped and logged;
the remaining subscribers still receive the event, and publishing to an
empty registry is a no-op (tasks keep running headless).

The scheduler publishes while holding its command lock; the send deadline
bounds how long one observer that stopped reading can hold that lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from trafficsim.core import events
from trafficsim.core.protocol import OutboundEvent

__all__ = ["Subscriber", "Broadcaster"]

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT_S = 5.0


class Subscriber(Protocol):
    """One observer endpoint able to receive outbound events."""

    async def send(self, event: OutboundEvent) -> None: ...


class Broadcaster:
    """Fan-out of outbound events to every subscribed observer.

    Args:
        send_timeout_s: Deadline for a single delivery to a single
            subscriber.  A subscriber that misses it is dropped.
    """

    def __init__(self, *, send_timeout_s: float = DEFAULT_SEND_TIMEOUT_S) -> None:
        self._subscribers: list[Subscriber] = []
        self._send_timeout_s = send_timeout_s

    def __len__(self) -> int:
        return len(self._subscribers)

    @property
    def subscribers(self) -> tuple[Subscriber, ...]:
        return tuple(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> None:
        if subscriber not in self._subscribers:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove *subscriber*; unknown subscribers are ignored."""
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    async def publish(self, event: OutboundEvent) -> None:
        """Deliver *event* to every current subscriber."""
        targets = list(self._subscribers)
        if not targets:
            return
        results = await asyncio.gather(
            *(self._deliver(subscriber, event) for subscriber in targets),
            return_exceptions=True,
        )
        for subscriber, result in zip(targets, results, strict=True):
            if isinstance(result, Exception):
                self._drop(subscriber, event, result)

    async def send_to(self, subscriber: Subscriber, event: OutboundEvent) -> bool:
        """Deliver *event* to one subscriber only.

        Returns:
            ``True`` on success, ``False`` if delivery failed or timed out
            (the subscriber is then dropped).
        """
        try:
            await self._deliver(subscriber, event)
        except Exception as exc:  # noqa: BLE001
            self._drop(subscriber, event, exc)
            return False
        return True

    async def _deliver(self, subscriber: Subscriber, event: OutboundEvent) -> None:
        await asyncio.wait_for(subscriber.send(event), timeout=self._send_timeout_s)

    def _drop(self, subscriber: Subscriber, event: OutboundEvent, exc: Exception) -> None:
        self.unsubscribe(subscriber)
        if isinstance(exc, TimeoutError):
            reason = f"no acknowledgement within {self._send_timeout_s:g} s"
        else:
            reason = str(exc) or type(exc).__name__
        logger.warning(
            "Dropped observer %r after failed %r delivery: %s",
            subscriber,
            event.event,
            reason,
            extra={"event": events.OBSERVER_DROPPED},
        )
