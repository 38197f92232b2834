"""Wire schemas for the duplex push/command channel.

Every message, in either direction, is a JSON object::

    {"event": "<name>", "data": {...}}

Inbound commands form one tagged union discriminated on ``event``
(:data:`InboundCommand`); outbound events likewise (:data:`OutboundEvent`).
Payload keys are camelCase on the wire.

Inbound ``start-traffic`` payloads are accepted as a JSON object and handed
to the scheduler unchanged: field-level validation of a start request (and
its reporting to observers) belongs to the scheduler, so that a bad delay
produces the same log line and failure result whichever surface sent it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Annotated, Any, Literal, Protocol

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from trafficsim.core.exceptions import ProtocolError
from trafficsim.core.models import LogLine, StatusSnapshot, TaskConfig

__all__ = [
    # Inbound
    "StartTrafficCommand",
    "StopTrafficCommand",
    "ClientLogCommand",
    "InboundCommand",
    "parse_inbound",
    # Outbound
    "LogEvent",
    "StatusUpdateEvent",
    "StartDelegatedLoopEvent",
    "StopDelegatedLoopEvent",
    "OutboundEvent",
    "EventPublisher",
    "to_wire",
]


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class ClientLogPayload(_Payload):
    text: str


class StartTrafficCommand(BaseModel):
    """``start-traffic {mode, url, minDelay, maxDelay, replicaCount?, lifetimeMs?}``"""

    event: Literal["start-traffic"]
    data: dict[str, Any] = Field(default_factory=dict)


class StopTrafficCommand(BaseModel):
    """``stop-traffic {}``: any payload is ignored."""

    event: Literal["stop-traffic"]
    data: Any = None


class ClientLogCommand(BaseModel):
    """``client-log {text}``; a bare string payload is also accepted."""

    event: Literal["client-log"]
    data: ClientLogPayload

    @field_validator("data", mode="before")
    @classmethod
    def _wrap_bare_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"text": v}
        return v


InboundCommand = Annotated[
    StartTrafficCommand | StopTrafficCommand | ClientLogCommand,
    Field(discriminator="event"),
]

_INBOUND_ADAPTER: TypeAdapter[InboundCommand] = TypeAdapter(InboundCommand)


def parse_inbound(message: str | bytes | Mapping[str, Any]) -> InboundCommand:
    """Validate one inbound message against the command union.

    Args:
        message: Raw JSON text/bytes, or an already-decoded mapping.

    Returns:
        The matching command model.

    Raises:
        ProtocolError: If the message is not JSON, not an object, names an
            unknown event, or carries a payload of the wrong shape.
    """
    if isinstance(message, str | bytes):
        try:
            message = json.loads(message)
        except ValueError as exc:
            raise ProtocolError(f"message is not valid JSON: {exc}") from exc
    if not isinstance(message, Mapping):
        raise ProtocolError(f"message must be a JSON object, got {type(message).__name__}")
    try:
        return _INBOUND_ADAPTER.validate_python(dict(message))
    except ValidationError as exc:
        raise ProtocolError(f"invalid message: {exc.errors()[0].get('msg', exc)}") from exc


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class LogPayload(_Payload):
    text: str


class StatusPayload(_Payload):
    is_running: bool


class StartDelegatedLoopPayload(_Payload):
    url: str
    replica_count: int
    lifetime_ms: int
    min_delay: int
    max_delay: int


class EmptyPayload(_Payload):
    pass


class LogEvent(BaseModel):
    """``log {text}``: one rendered, newline-free line."""

    model_config = ConfigDict(frozen=True)

    event: Literal["log"] = "log"
    data: LogPayload

    @classmethod
    def from_line(cls, line: LogLine) -> LogEvent:
        return cls(data=LogPayload(text=line.render()))


class StatusUpdateEvent(BaseModel):
    """``statusUpdate {isRunning}``: the authoritative run state."""

    model_config = ConfigDict(frozen=True)

    event: Literal["statusUpdate"] = "statusUpdate"
    data: StatusPayload

    @classmethod
    def from_snapshot(cls, snapshot: StatusSnapshot) -> StatusUpdateEvent:
        return cls(data=StatusPayload(is_running=snapshot.is_running))


class StartDelegatedLoopEvent(BaseModel):
    """``start-delegated-loop {url, replicaCount, lifetimeMs, minDelay, maxDelay}``"""

    model_config = ConfigDict(frozen=True)

    event: Literal["start-delegated-loop"] = "start-delegated-loop"
    data: StartDelegatedLoopPayload

    @classmethod
    def from_config(cls, config: TaskConfig) -> StartDelegatedLoopEvent:
        if config.replica is None:
            raise ValueError("start-delegated-loop requires a browser-mode config")
        return cls(
            data=StartDelegatedLoopPayload(
                url=config.url,
                replica_count=config.replica.replica_count,
                lifetime_ms=config.replica.lifetime_ms,
                min_delay=config.min_delay_ms,
                max_delay=config.max_delay_ms,
            )
        )


class StopDelegatedLoopEvent(BaseModel):
    """``stop-delegated-loop {}``"""

    model_config = ConfigDict(frozen=True)

    event: Literal["stop-delegated-loop"] = "stop-delegated-loop"
    data: EmptyPayload = Field(default_factory=EmptyPayload)


OutboundEvent = LogEvent | StatusUpdateEvent | StartDelegatedLoopEvent | StopDelegatedLoopEvent


class EventPublisher(Protocol):
    """Anything that can fan an outbound event out to observers.

    Implementations must not raise on delivery failure.
    """

    async def publish(self, event: OutboundEvent) -> None: ...


def to_wire(event: OutboundEvent) -> dict[str, Any]:
    """Serialise *event* to the JSON-ready ``{"event", "data"}`` envelope."""
    return event.model_dump(mode="json", by_alias=True)
