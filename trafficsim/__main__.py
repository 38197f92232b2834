"""Trafficsim process entry-point.

Usage:
    python -m trafficsim [--host HOST] [--port PORT] [--log-level LEVEL] [--log-format FORMAT]

Configures logging first, loads :class:`~trafficsim.core.settings.Settings`,
then serves the application with uvicorn until interrupted.  The server
starts Idle; tasks are started through the API or the observer channel.
"""

from __future__ import annotations

import argparse
import logging
import sys

from trafficsim.core import configure_logging
from trafficsim.core.exceptions import ConfigError
from trafficsim.core.settings import load_settings


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="trafficsim",
        description="Controllable HTTP traffic generator with live observers.",
    )
    parser.add_argument("--host", default=None, help="Override HOST (default 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="Override PORT (default 3000).")
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"trafficsim: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    overrides = {
        key: value
        for key, value in (("host", args.host), ("port", args.port))
        if value is not None
    }
    try:
        settings = load_settings(**overrides)
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    # Lazy import keeps `--help` fast.
    import uvicorn  # noqa: PLC0415

    from trafficsim.api.app import create_app  # noqa: PLC0415

    logger.info("Trafficsim listening on http://%s:%d", settings.host, settings.port)
    try:
        uvicorn.run(
            create_app(settings),
            host=settings.host,
            port=settings.port,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
