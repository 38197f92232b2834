"""FastAPI application exposing the command surface and observer channel."""

from trafficsim.api.app import WebSocketObserver, create_app

__all__ = ["WebSocketObserver", "create_app"]
