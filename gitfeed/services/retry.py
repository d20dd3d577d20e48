"""
Retry Policy

Responsibilities:
- Run platform calls with rate-limit-aware exponential backoff
- Interpret 429 and rate-limited 403 responses, their Retry-After and
  reset headers, and 5xx errors
- Stop immediately on non-retryable HTTP errors
- Keep every wait cancelable through the fetch cycle's cancel event
"""

import asyncio
import logging
import math
import time
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from github.GithubException import RateLimitExceededException
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    stop_never,
)

from gitfeed.errors import FetchCancelledError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0
BACKOFF_FACTOR = 1.5
TRANSIENT_WAIT_CEILING = 5.0

RATE_LIMIT_MARKERS = ("rate limit", "api rate limit exceeded", "403")
RATE_LIMIT_TEXT = ("rate limit", "abuse detection")
RESET_HEADERS = ("Ratelimit-Reset", "X-RateLimit-Reset")


def http_status_of(exc: BaseException) -> Optional[int]:
    """
    Extract an HTTP status from a platform error.

    Understands github.GithubException and PlatformAPIError (``status``) and
    requests.HTTPError (``response.status_code``).
    """
    status = getattr(exc, "status", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def headers_of(exc: BaseException) -> Mapping[str, Any]:
    headers = getattr(exc, "headers", None)
    if headers:
        return headers
    response = getattr(exc, "response", None)
    return getattr(response, "headers", None) or {}


def header_value(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return None if value is None else str(value)
    return None


def is_rate_limit_message(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def is_rate_limited(exc: BaseException, status: Optional[int] = None) -> bool:
    """
    True for a 429, or a 403 that GitHub uses to signal an exhausted quota.

    A 403 only counts when the remaining quota header is 0, a Retry-After is
    present, PyGithub classified it as RateLimitExceededException, or the
    body names a rate limit. Any other 403 is a permission error.
    """
    if status is None:
        status = http_status_of(exc)
    if status == 429:
        return True
    if status != 403:
        return False
    if isinstance(exc, RateLimitExceededException):
        return True
    headers = headers_of(exc)
    if (header_value(headers, "X-RateLimit-Remaining") or "").strip() == "0":
        return True
    if header_value(headers, "Retry-After"):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RATE_LIMIT_TEXT)


class RetryPolicy:
    """
    Executes async operations until they succeed or fail terminally.

    Backoff starts at 1s and grows by 1.5x after every retryable wait; the
    state is local to each ``execute`` call. Without ``max_attempts`` or
    ``max_elapsed`` the policy retries indefinitely.
    """

    def __init__(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        max_attempts: Optional[int] = None,
        max_elapsed: Optional[float] = None,
        verbose: bool = False,
        progress: Optional[Callable[[str, int], None]] = None,
        clock: Callable[[], float] = time.time,
        tick: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            cancel_event: Shared fetch-cycle cancel signal
            max_attempts: Optional attempt cap (None/0 = unlimited)
            max_elapsed: Optional elapsed-seconds cap (None/0 = unlimited)
            verbose: Log every wait tick instead of one line per wait
            progress: Observer called with (operation, remaining seconds) per tick
            clock: Wall clock used to interpret the reset headers
            tick: Coroutine used to wait one tick (defaults to a cancel-aware wait)
        """
        self.cancel_event = cancel_event
        self.max_attempts = max_attempts or None
        self.max_elapsed = max_elapsed or None
        self.verbose = verbose
        self.progress = progress
        self._clock = clock
        self._tick = tick or self._wait_for_cancel

    async def execute(
        self, operation: Callable[[], Awaitable[T]], label: str
    ) -> T:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine function performing one attempt
            label: Operation name used in logs and errors

        Returns:
            The operation's result

        Raises:
            FetchCancelledError: The cancel event fired
            RetryExhaustedError: A configured bound was reached
            Exception: The first non-retryable error, unchanged
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(self.is_retryable),
            wait=self.compute_wait,
            stop=self._stop_condition(),
            sleep=partial(self._sleep, label=label),
            before_sleep=partial(self._log_retry, label=label),
        )
        try:
            return await retrying(self._attempt, operation, label)
        except RetryError as exc:
            last = exc.last_attempt
            logger.error(f"[{label}] giving up after {last.attempt_number} attempts")
            raise RetryExhaustedError(label, last.attempt_number) from last.exception()

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, FetchCancelledError) or not isinstance(exc, Exception):
            return False
        status = http_status_of(exc)
        if status is None:
            return True
        if is_rate_limited(exc, status):
            return True
        return 500 <= status <= 599

    def compute_wait(self, retry_state: RetryCallState) -> float:
        """Wait before the next attempt, based on the error just seen."""
        backoff = INITIAL_BACKOFF * BACKOFF_FACTOR ** (retry_state.attempt_number - 1)
        capped = min(backoff, MAX_BACKOFF)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if exc is None:
            return capped

        status = http_status_of(exc)
        if is_rate_limited(exc, status):
            return self._rate_limit_wait(headers_of(exc), capped)
        if status is not None:
            return capped
        if is_rate_limit_message(exc):
            return capped
        return min(backoff / 2, TRANSIENT_WAIT_CEILING)

    def _rate_limit_wait(self, headers: Mapping[str, Any], fallback: float) -> float:
        retry_after = (header_value(headers, "Retry-After") or "").strip()
        if retry_after.isdigit() and int(retry_after) > 0:
            return float(retry_after)

        for name in RESET_HEADERS:
            reset = (header_value(headers, name) or "").strip()
            if reset.isdigit() and int(reset) > 0:
                return max(1.0, int(reset) - self._clock())

        return fallback

    def _stop_condition(self):
        stop = stop_never
        if self.max_attempts:
            stop = stop_after_attempt(self.max_attempts)
        if self.max_elapsed:
            by_time = stop_after_delay(self.max_elapsed)
            stop = by_time if stop is stop_never else stop | by_time
        return stop

    def _check_cancelled(self, label: str) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise FetchCancelledError(label)

    async def _attempt(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        self._check_cancelled(label)
        if self.cancel_event is None:
            return await operation()

        op_task = asyncio.ensure_future(operation())
        cancel_task = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {op_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            op_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if op_task in done:
            return op_task.result()
        op_task.cancel()
        raise FetchCancelledError(label)

    async def _sleep(self, seconds: float, label: str) -> None:
        remaining = float(seconds)
        while remaining > 0:
            self._check_cancelled(label)
            whole = math.ceil(remaining)
            if self.progress is not None:
                self.progress(label, whole)
            if self.verbose:
                logger.info(f"[{label}] retrying in {whole}s")
            step = min(1.0, remaining)
            await self._tick(step)
            remaining -= step
        self._check_cancelled(label)

    async def _wait_for_cancel(self, seconds: float) -> None:
        if self.cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _log_retry(self, retry_state: RetryCallState, label: str) -> None:
        exc = retry_state.outcome.exception()
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        status = http_status_of(exc)
        if is_rate_limited(exc, status):
            reason = "rate limit hit"
        elif status is not None:
            reason = f"server error {status}"
        else:
            reason = f"error: {exc}"
        logger.info(
            f"[{label}] {reason} (attempt {retry_state.attempt_number}), "
            f"waiting {wait:.1f}s before retry"
        )
