"""Shared pytest fixtures and configuration for the Trafficsim test suite.

This file is loaded automatically by pytest before any test module.
In-memory collaborators live in :mod:`tests.support`.
"""

from __future__ import annotations

import logging
import os

import pytest
from pydantic_settings import SettingsConfigDict

from tests.support import FakeFetcher, RecordingPublisher
from trafficsim.core import configure_logging
from trafficsim.core.settings import Settings

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    ``force=True`` applies the configuration even when pytest's own
    ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Trafficsim env vars and disable ``.env`` loading for one test.

    pydantic-settings reads the ``.env`` file directly rather than via
    ``os.environ``, so the file has to be switched off separately.
    """
    prefixes = (
        "HOST",
        "PORT",
        "FETCH_",
        "OBSERVER_",
        "DEFAULT_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None) -> Settings:
    """Settings with fast fallback delays, isolated from the environment."""
    return Settings(default_min_delay_ms=10, default_max_delay_ms=20)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture()
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to test code."""
    return logging.getLogger("tests")
