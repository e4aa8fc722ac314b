"""Tests for the per-provider retry handler."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from diagnosis_gateway.exceptions import ProviderResponseError
from diagnosis_gateway.orchestrator import RetryHandler, is_retryable_error


def fast_handler(max_retries: int) -> RetryHandler:
    return RetryHandler(max_retries=max_retries, min_wait=0, max_wait=0)


@pytest.mark.unit
class TestRetryHandler:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        func = AsyncMock(return_value="ok")
        assert await fast_handler(2).execute(func, "arg") == "ok"
        func.assert_awaited_once_with("arg")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_retries", [0, 1, 2, 3])
    async def test_budget_allows_retries_plus_one_attempts(self, max_retries, make_status_error):
        func = AsyncMock(side_effect=make_status_error(503))
        with pytest.raises(httpx.HTTPStatusError):
            await fast_handler(max_retries).execute(func)
        assert func.await_count == max_retries + 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, make_status_error):
        func = AsyncMock(side_effect=[make_status_error(502), httpx.ReadTimeout("slow"), "ok"])
        on_retry = MagicMock()

        assert await fast_handler(2).execute(func, on_retry=on_retry) == "ok"
        assert func.await_count == 3
        assert on_retry.call_count == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self, make_status_error):
        error = make_status_error(401)
        func = AsyncMock(side_effect=error)

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await fast_handler(3).execute(func)

        assert exc_info.value is error
        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_last_error_is_reraised_unchanged(self):
        errors = [httpx.ConnectError("first"), httpx.ConnectError("second")]
        func = AsyncMock(side_effect=errors)

        with pytest.raises(httpx.ConnectError) as exc_info:
            await fast_handler(1).execute(func)

        assert exc_info.value is errors[1]

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            RetryHandler(max_retries=-1)

    def test_max_attempts(self):
        assert RetryHandler(max_retries=2).max_attempts == 3

    def test_with_exponential_backoff(self):
        handler = RetryHandler.with_exponential_backoff(max_retries=4, base_delay=1, max_delay=5)
        assert handler.max_retries == 4
        assert handler.min_wait == 1
        assert handler.max_wait == 5
        assert handler.jitter is True


@pytest.mark.unit
@pytest.mark.parametrize(
    "status,expected",
    [(408, True), (409, True), (429, True), (500, True), (503, True), (400, False), (401, False), (404, False)],
)
def test_is_retryable_status(status, expected, make_status_error):
    assert is_retryable_error(make_status_error(status)) is expected


@pytest.mark.unit
def test_transport_errors_are_retryable():
    assert is_retryable_error(httpx.ConnectError("refused")) is True
    assert is_retryable_error(httpx.ReadTimeout("slow")) is True
    assert is_retryable_error(ValueError("bad")) is False


@pytest.mark.unit
def test_invalid_provider_reply_is_not_retried():
    assert is_retryable_error(ProviderResponseError("Response was not JSON", provider="e2e")) is False
