"""Fetch executor: one outbound GET per loop action, always classified.

Wraps :class:`httpx.AsyncClient` with:

* **User-Agent rotation**: a curated pool of modern browser UA strings; a
  random UA is injected into every outgoing request so the generated traffic
  does not present a single fingerprint.
* **Bounded timeout**: every request is capped by ``timeout_s``.
* **Optional retries**: with ``max_attempts > 1``, transport errors and 5xx
  responses are retried via :mod:`tenacity` with exponential back-off and
  jitter.  The default of one attempt keeps "one request per action".
* **Total classification**: :meth:`FetchExecutor.perform` never raises.
  Every outcome, including timeouts, DNS failures, malformed URLs and HTTP
  error statuses, comes back as an
  :class:`~trafficsim.core.models.ActionResult`.

One executor is shared by every task for the lifetime of the process so the
connection pool is reused across ticks::

    async with FetchExecutor(timeout_s=5.0) as fetcher:
        result = await fetcher.perform("https://example.com")
        if result.ok:
            print(result.status_code)
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from trafficsim.core.exceptions import FetchError
from trafficsim.core.models import ActionResult

__all__ = ["FetchExecutor"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: HTTP status codes that signal a transient server-side fault (safe to retry).
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

_DEFAULT_TIMEOUT_S: Final[float] = 5.0

_DEFAULT_MAX_ATTEMPTS: Final[int] = 1

#: Cap on the exponential back-off base between retries (seconds).
_MAX_BACKOFF_BASE: Final[float] = 5.0

#: Upper bound on jitter added on top of the exponential base (seconds).
_MAX_BACKOFF_JITTER: Final[float] = 1.0

# ---------------------------------------------------------------------------
# User-Agent pool
# ---------------------------------------------------------------------------

_USER_AGENTS: Final[list[str]] = [
    # Chrome 124 on Windows 11
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    # Chrome 124 on macOS
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    # Firefox 125 on Linux
    (
        "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:125.0) "
        "Gecko/20100101 Firefox/125.0"
    ),
    # Safari 17 on macOS
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4_1) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/17.4 Safari/605.1.15"
    ),
    # Edge 124 on Windows
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0"
    ),
    # Chrome on Android
    (
        "Mozilla/5.0 (Linux; Android 14; Pixel 8) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.6367.82 Mobile Safari/537.36"
    ),
    # Safari on iPhone
    (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/17.4 Mobile/15E148 Safari/604.1"
    ),
]


def _pick_user_agent() -> str:
    return random.choice(_USER_AGENTS)


class _RetryableServerError(FetchError):
    """Internal: signals a 5xx status for tenacity to retry.

    Escapes the retry loop only once attempts are exhausted, and is then
    classified like any other :class:`FetchError`.
    """


def _backoff_wait(retry_state: RetryCallState) -> float:
    """Exponential back-off (0.5 s, 1 s, 2 s, … capped) plus random jitter."""
    attempt = max(retry_state.attempt_number, 1)
    base = min(0.5 * 2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    return base + random.uniform(0.0, _MAX_BACKOFF_JITTER)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class FetchExecutor:
    """Performs classified GET requests against arbitrary URLs.

    Args:
        timeout_s: Timeout applied to connect, read, write and pool
            acquisition of every request.
        max_attempts: Total attempts per :meth:`perform` call (``>= 1``).
        headers: Extra default headers merged into every request.  The
            rotated ``User-Agent`` always wins.
        transport: Custom httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Raises:
        ValueError: If ``timeout_s`` is not positive or ``max_attempts < 1``.
    """

    def __init__(
        self,
        *,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {timeout_s!r}.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._timeout_s = timeout_s
        self._max_attempts = max_attempts
        self._default_headers: dict[str, str] = headers or {}
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FetchExecutor:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("FetchExecutor HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def perform(self, url: str) -> ActionResult:
        """Issue one GET to *url* and classify the outcome.

        Never raises (except for task cancellation): every failure is
        converted into :meth:`ActionResult.failure`.

        Args:
            url: Absolute URL to fetch.

        Returns:
            ``ActionResult.success(status)`` for a 2xx response, otherwise
            ``ActionResult.failure(reason, status)``.
        """
        try:
            response = await self._get_with_retry(url)
        except FetchError as exc:
            return ActionResult.failure(exc.reason, exc.status_code)
        except httpx.TimeoutException:
            return ActionResult.failure(f"timeout of {int(self._timeout_s * 1000)}ms exceeded")
        except httpx.HTTPError as exc:
            return ActionResult.failure(str(exc) or type(exc).__name__)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Unexpected error fetching %s.", url, exc_info=True)
            return ActionResult.failure(f"{type(exc).__name__}: {exc}")

        return ActionResult.success(response.status_code)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_s),
                follow_redirects=True,
                transport=self._transport,
                headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                    "Cache-Control": "no-cache",
                    "Pragma": "no-cache",
                    **self._default_headers,
                },
            )
            logger.debug("FetchExecutor session opened (timeout=%.1f s).", self._timeout_s)
        return self._http

    async def _get_with_retry(self, url: str) -> httpx.Response:
        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.debug(
                "GET %s: attempt %d/%d failed (%s); retrying.",
                url,
                rs.attempt_number,
                self._max_attempts,
                type(exc).__name__ if exc else "?",
            )

        response: httpx.Response | None = None
        async for attempt in AsyncRetrying(
            wait=_backoff_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type((_RetryableServerError, httpx.TransportError)),
            reraise=True,
            before_sleep=_before_sleep,
        ):
            with attempt:
                response = await self._single_get(url)

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_get(self, url: str) -> httpx.Response:
        client = await self._ensure_client()
        response = await client.get(url, headers={"User-Agent": _pick_user_agent()})

        logger.debug(
            "GET %s → %d (%.0f ms)",
            url,
            response.status_code,
            response.elapsed.total_seconds() * 1000 if response.elapsed else 0,
        )

        if response.is_success:
            return response
        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                url, f"Request failed with status code {response.status_code}", response.status_code
            )
        raise FetchError(
            url, f"Request failed with status code {response.status_code}", response.status_code
        )
