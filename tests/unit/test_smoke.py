"""Smoke tests: verify the test harness itself is wired up correctly.

These tests assert nothing about traffic generation.  Their sole purpose is
to confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works.
3. Core trafficsim modules import without errors.
4. ``configure_logging()`` executes without raising.
5. The exception taxonomy is importable and the hierarchy is intact.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from trafficsim.core import (
    ConfigError,
    FetchError,
    JsonFormatter,
    ProtocolError,
    TaskConfigError,
    TrafficSimError,
    configure_logging,
)
from trafficsim.core.settings import load_settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


def test_core_imports_succeed() -> None:
    assert configure_logging is not None
    assert JsonFormatter is not None
    assert TrafficSimError is not None


def test_package_layers_import() -> None:
    """Every layer imports without a circular-import failure."""
    import trafficsim.api  # noqa: F401, PLC0415
    import trafficsim.engine  # noqa: F401, PLC0415
    import trafficsim.gateway  # noqa: F401, PLC0415


def test_configure_logging_text() -> None:
    configure_logging(level="INFO", fmt="text", force=True)


def test_configure_logging_json() -> None:
    configure_logging(level="DEBUG", fmt="json", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


def test_exception_hierarchy_base() -> None:
    for exc_class in (ConfigError, TaskConfigError, FetchError, ProtocolError):
        assert issubclass(exc_class, TrafficSimError), (
            f"{exc_class.__name__} is not a subclass of TrafficSimError"
        )


def test_fetch_error_carries_status_and_reason() -> None:
    exc = FetchError("https://example.com", "Request failed with status code 404", 404)
    assert exc.url == "https://example.com"
    assert exc.status_code == 404
    assert exc.reason == "Request failed with status code 404"
    assert "https://example.com" in str(exc)

    assert FetchError("https://example.com", "boom").status_code is None


def test_load_settings_wraps_validation_error(clean_env: None) -> None:
    with pytest.raises(ConfigError, match="port"):
        load_settings(port=0)


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    await asyncio.sleep(0)
    assert True


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise ProtocolError("simulated failure")

    with pytest.raises(ProtocolError, match="simulated failure"):
        await _failing_coro()
