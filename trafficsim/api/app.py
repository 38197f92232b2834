"""HTTP and WebSocket surface.

Routes
------
``POST /api/start``   ``{url, minDelay, maxDelay}`` → ``{success, message}``
                      (200, or 400 on invalid parameters).  Always server mode.
``POST /api/stop``    → ``{success: true, message}`` (200, idempotent).
``GET  /api/status``  → ``{isRunning, mode, url, actionsCompleted, failures,
                      startedAt}`` (200).
``WS   /ws``          Observer channel; see :mod:`trafficsim.core.protocol`.

Handlers are thin: every command goes through the gateway built in the
application lifespan and stored on ``app.state``, which delegates to the
scheduler.  A start body that is not a JSON object is passed on as-is and
rejected by the scheduler like any other invalid start (400 plus a
``SYSTEM`` log line).
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse

from trafficsim.core.models import TaskMode
from trafficsim.core.protocol import OutboundEvent, to_wire
from trafficsim.core.settings import Settings
from trafficsim.engine.fetcher import FetchExecutor
from trafficsim.engine.scheduler import ActionFetcher, TaskScheduler
from trafficsim.gateway.broadcaster import Broadcaster
from trafficsim.gateway.gateway import BroadcastGateway

__all__ = ["create_app", "WebSocketObserver"]

logger = logging.getLogger(__name__)

router = APIRouter()


class WebSocketObserver:
    """Adapts a FastAPI :class:`WebSocket` to the broadcaster's subscriber protocol.

    Sends are serialised per socket so events arrive in publish order.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._send_lock = asyncio.Lock()
        client = websocket.client
        self._label = f"{client.host}:{client.port}" if client else "unknown"

    def __repr__(self) -> str:
        return f"<WebSocketObserver {self._label}>"

    async def send(self, event: OutboundEvent) -> None:
        async with self._send_lock:
            await self._websocket.send_json(to_wire(event))


# ---------------------------------------------------------------------------
# Request/response API
# ---------------------------------------------------------------------------


def _gateway(request: Request) -> BroadcastGateway:
    return request.app.state.gateway


async def _start_params(request: Request) -> object:
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        logger.debug("Start request body is not valid JSON.")
        return body.decode("utf-8", errors="replace")


@router.post("/api/start")
async def start_task(request: Request) -> JSONResponse:
    params = await _start_params(request)
    result = await _gateway(request).start(params, mode=TaskMode.SERVER)
    return JSONResponse(
        status_code=200 if result.success else 400,
        content=result.model_dump(),
    )


@router.post("/api/stop")
async def stop_task(request: Request) -> JSONResponse:
    result = await _gateway(request).stop()
    return JSONResponse(status_code=200, content=result.model_dump())


@router.get("/api/status")
async def task_status(request: Request) -> JSONResponse:
    snapshot = _gateway(request).snapshot()
    return JSONResponse(status_code=200, content=snapshot.model_dump(mode="json", by_alias=True))


# ---------------------------------------------------------------------------
# Observer channel
# ---------------------------------------------------------------------------


@router.websocket("/ws")
async def observer_channel(websocket: WebSocket) -> None:
    gateway: BroadcastGateway = websocket.app.state.gateway
    await websocket.accept()
    observer = WebSocketObserver(websocket)
    await gateway.connect(observer)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break
            message = frame.get("text")
            if message is None:
                message = frame.get("bytes")
            if message is not None:
                await gateway.handle(observer, message)
    finally:
        gateway.disconnect(observer)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    *,
    fetcher: ActionFetcher | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Application settings.  Loaded from environment if ``None``.
        fetcher: Replaces the real :class:`FetchExecutor`, e.g. in tests.

    Returns:
        A ready-to-serve :class:`FastAPI` instance.  The scheduler, gateway
        and HTTP session are created on startup and torn down on shutdown,
        which also stops any running task.
    """
    resolved = settings if settings is not None else Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with AsyncExitStack() as stack:
            action_fetcher = fetcher
            if action_fetcher is None:
                action_fetcher = await stack.enter_async_context(
                    FetchExecutor(
                        timeout_s=resolved.fetch_timeout_s,
                        max_attempts=resolved.fetch_max_attempts,
                    )
                )
            broadcaster = Broadcaster(send_timeout_s=resolved.observer_send_timeout_s)
            scheduler = TaskScheduler(broadcaster, action_fetcher, resolved)
            app.state.gateway = BroadcastGateway(scheduler, broadcaster)
            logger.info("Trafficsim ready.")
            try:
                yield
            finally:
                await scheduler.shutdown()
                logger.info("Trafficsim shut down.")

    app = FastAPI(title="Trafficsim", lifespan=lifespan)
    app.include_router(router)
    return app
