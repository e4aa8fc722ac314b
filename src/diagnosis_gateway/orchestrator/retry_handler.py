"""Retry handler with exponential backoff for providers without SDK-level retries."""

from collections.abc import Awaitable, Callable
from typing import Optional, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from diagnosis_gateway.orchestrator.classifier import extract_status_code
from diagnosis_gateway.telemetry import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429})


def is_retryable_error(error: BaseException) -> bool:
    """Transport failures, 408/409/429 and 5xx responses are worth retrying."""
    if isinstance(error, httpx.TransportError):
        return True
    status = extract_status_code(error)
    if status is None:
        return False
    return status in RETRYABLE_STATUS_CODES or status >= 500


class RetryHandler:
    """Spends a retry budget against a single provider.

    A budget of ``max_retries`` allows ``max_retries + 1`` attempts in total.
    """

    def __init__(
        self,
        max_retries: int = 2,
        min_wait: float = 0.5,
        max_wait: float = 8.0,
        multiplier: float = 2.0,
        jitter: bool = True,
        retry_if: Callable[[BaseException], bool] = is_retryable_error,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.multiplier = multiplier
        self.jitter = jitter
        self.retry_if = retry_if

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def _wait_strategy(self):
        if self.jitter:
            return wait_random_exponential(
                multiplier=self.multiplier, min=self.min_wait, max=self.max_wait
            )
        return wait_exponential(multiplier=self.multiplier, min=self.min_wait, max=self.max_wait)

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        on_retry: Optional[Callable[[BaseException, int], None]] = None,
        **kwargs,
    ) -> T:
        """Await ``func`` until it succeeds, the error is not retryable or attempts run out.

        The last error is re-raised unchanged.
        """

        def _before_sleep(retry_state):
            error = retry_state.outcome.exception()
            logger.warning(
                "provider_call_retry",
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                error_type=type(error).__name__,
                error=str(error),
            )
            if on_retry:
                on_retry(error, retry_state.attempt_number)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait_strategy(),
            retry=retry_if_exception(self.retry_if),
            before_sleep=_before_sleep,
            reraise=True,
        ):
            with attempt:
                return await func(*args, **kwargs)

        # AsyncRetrying either returns from inside the block or re-raises
        raise RuntimeError("Retry loop completed without returning")

    @staticmethod
    def with_exponential_backoff(
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
    ) -> "RetryHandler":
        """Create retry handler with jittered exponential backoff."""
        return RetryHandler(
            max_retries=max_retries,
            min_wait=base_delay,
            max_wait=max_delay,
            multiplier=2.0,
            jitter=True,
        )
