"""Tests for the two-stage fallback orchestrator."""

from unittest.mock import AsyncMock

import pytest

from diagnosis_gateway.exceptions import ConfigurationError
from diagnosis_gateway.orchestrator import FallbackOrchestrator, with_fallback
from diagnosis_gateway.schemas import FallbackPolicy


class PrimaryError(Exception):
    pass


class FallbackError(Exception):
    pass


@pytest.fixture
def policy():
    return FallbackPolicy(
        enabled=True,
        primary_max_retries=2,
        fallback_max_retries=1,
        primary_provider_label="google:gemini-2.5-flash",
        fallback_provider_label="deepinfra:llama",
    )


@pytest.mark.unit
class TestFallbackOrchestrator:
    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback(self, policy):
        primary = AsyncMock(return_value="primary")
        fallback = AsyncMock(return_value="fallback")

        assert await FallbackOrchestrator().run(primary, fallback, policy) == "primary"

        primary.assert_awaited_once_with(2)
        fallback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_used_after_primary_failure(self, policy):
        primary = AsyncMock(side_effect=PrimaryError("503 from upstream"))
        fallback = AsyncMock(return_value="fallback")

        assert await FallbackOrchestrator().run(primary, fallback, policy) == "fallback"

        primary.assert_awaited_once_with(2)
        fallback.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_both_fail_raises_primary_error(self, policy):
        primary_error = PrimaryError("primary down")
        primary = AsyncMock(side_effect=primary_error)
        fallback = AsyncMock(side_effect=FallbackError("fallback down"))

        with pytest.raises(PrimaryError) as exc_info:
            await FallbackOrchestrator().run(primary, fallback, policy)

        assert exc_info.value is primary_error
        fallback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disabled_policy_never_calls_fallback(self, policy):
        disabled = FallbackPolicy(enabled=False, primary_max_retries=0)
        primary_error = PrimaryError("down")
        primary = AsyncMock(side_effect=primary_error)
        fallback = AsyncMock(return_value="fallback")

        with pytest.raises(PrimaryError) as exc_info:
            await FallbackOrchestrator().run(primary, fallback, disabled)

        assert exc_info.value is primary_error
        primary.assert_awaited_once_with(0)
        fallback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configuration_error_bypasses_fallback(self, policy):
        primary = AsyncMock(side_effect=ConfigurationError("Unknown provider: nope"))
        fallback = AsyncMock(return_value="fallback")

        with pytest.raises(ConfigurationError, match="Unknown provider: nope"):
            await FallbackOrchestrator().run(primary, fallback, policy)

        fallback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fallback_configuration_error_surfaces_primary_error(self, policy):
        primary_error = PrimaryError("primary down")
        primary = AsyncMock(side_effect=primary_error)
        fallback = AsyncMock(side_effect=ConfigurationError("Missing API key"))

        with pytest.raises(PrimaryError) as exc_info:
            await FallbackOrchestrator().run(primary, fallback, policy)

        assert exc_info.value is primary_error

    @pytest.mark.asyncio
    async def test_default_policy(self):
        primary = AsyncMock(side_effect=PrimaryError("down"))
        fallback = AsyncMock(return_value="fallback")
        orchestrator = FallbackOrchestrator(FallbackPolicy(fallback_max_retries=5))

        assert await orchestrator.run(primary, fallback) == "fallback"
        primary.assert_awaited_once_with(2)
        fallback.assert_awaited_once_with(5)

    @pytest.mark.asyncio
    async def test_with_fallback_shortcut(self, policy):
        primary = AsyncMock(side_effect=PrimaryError("down"))
        fallback = AsyncMock(return_value={"text": "ok"})

        assert await with_fallback(primary, fallback, policy) == {"text": "ok"}
