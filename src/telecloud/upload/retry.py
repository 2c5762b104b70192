"""Retry policy for per-file transfers.

Wraps tenacity's ``AsyncRetrying`` with a wait strategy chosen from the
classified error:

* :class:`RateLimitError` -- the server's ``retry_after`` hint when present,
  else ``min(attempt * base_delay, cap_delay)``
* :class:`TransientError` -- ``min(attempt * base_delay, cap_delay)``
* anything else -- retried immediately

After ``max_attempts`` attempts the last error is wrapped in
:class:`PermanentTransferFailure`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from telecloud.constants import (
    MAX_RETRY_ATTEMPTS,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_CAP_DELAY_SECONDS,
)
from telecloud.upload.exceptions import (
    PermanentTransferFailure,
    RateLimitError,
    TransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded, error-aware retry for a single file's transfer.

    Args:
        max_attempts: Total attempts including the first.
        base_delay: Seconds per attempt for linear backoff.
        cap_delay: Upper bound on computed backoff (server hints are not capped).
        sleep: Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        cap_delay: float = RETRY_CAP_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.cap_delay = cap_delay
        self._sleep = sleep

    def backoff(self, attempt: int) -> float:
        return min(attempt * self.base_delay, self.cap_delay)

    def wait_for(self, error: BaseException | None, attempt: int) -> float:
        """Seconds to wait after *error* on 1-based *attempt*."""
        if isinstance(error, RateLimitError):
            if error.retry_after is not None:
                return error.retry_after
            return self.backoff(attempt)
        if isinstance(error, TransientError):
            return self.backoff(attempt)
        return 0.0

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.wait_for(error, retry_state.attempt_number)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        label = retry_state.kwargs.get("_label", "transfer")
        if isinstance(error, RateLimitError):
            kind = "Rate limited"
        elif isinstance(error, TransientError):
            kind = "Network issue"
        else:
            kind = "Transfer error"
        logger.warning(
            "%s on %s (attempt %d/%d): %s; retrying in %.1fs",
            kind,
            label,
            retry_state.attempt_number,
            self.max_attempts,
            error,
            delay,
        )

    async def run(
        self,
        label: str,
        fn: Callable[[], Awaitable[T]],
        on_retry: Callable[[BaseException | None], None] | None = None,
    ) -> T:
        """Await ``fn()`` until it succeeds or the attempt ceiling is reached.

        Args:
            label: Name used in log lines and in the failure (the file path).
            fn: Zero-argument coroutine factory; called once per attempt.
            on_retry: Called with the failed attempt's error before each wait.

        Raises:
            PermanentTransferFailure: Every attempt failed.
        """

        def before_sleep(retry_state: RetryCallState) -> None:
            self._log_retry(retry_state)
            if on_retry is not None:
                on_retry(retry_state.outcome.exception() if retry_state.outcome else None)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(Exception),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async def attempt(_label: str) -> T:
            return await fn()

        try:
            return await retrying(attempt, _label=label)
        except Exception as exc:
            attempts = retrying.statistics.get("attempt_number", self.max_attempts)
            raise PermanentTransferFailure(label, attempts, exc) from exc
