"""Two-stage primary/fallback executor."""

import time
from typing import Awaitable, Optional, Protocol, TypeVar

from diagnosis_gateway.exceptions import ConfigurationError
from diagnosis_gateway.orchestrator.classifier import classify_error
from diagnosis_gateway.schemas import FallbackPolicy
from diagnosis_gateway.telemetry import get_logger

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

logger = get_logger(__name__)


class ProviderOperation(Protocol[T_co]):
    """One provider call site; spends ``max_retries`` itself before failing."""

    def __call__(self, max_retries: int) -> Awaitable[T_co]: ...


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class FallbackOrchestrator:
    """Runs a primary operation and, when policy allows, one fallback.

    The orchestrator never re-invokes an operation: retries are spent inside
    the operations. When both stages fail the primary error is re-raised,
    so callers and alerts always see why the default path failed.
    """

    def __init__(self, default_policy: Optional[FallbackPolicy] = None):
        self.default_policy = default_policy or FallbackPolicy()

    async def run(
        self,
        primary: ProviderOperation[T],
        fallback: ProviderOperation[T],
        policy: Optional[FallbackPolicy] = None,
    ) -> T:
        policy = policy or self.default_policy
        start = time.perf_counter()

        logger.debug(
            "primary_attempt_started",
            provider=policy.primary_provider_label,
            max_retries=policy.primary_max_retries,
        )

        try:
            result = await primary(policy.primary_max_retries)
        except ConfigurationError:
            raise
        except Exception as primary_error:
            classification = classify_error(primary_error)
            logger.warning(
                "primary_attempt_failed",
                provider=policy.primary_provider_label,
                elapsed_ms=_elapsed_ms(start),
                error_kind=classification.kind.value,
                description=classification.description,
                error=str(primary_error),
            )

            if not policy.enabled:
                logger.error(
                    "fallback_disabled",
                    provider=policy.primary_provider_label,
                )
                raise

            if not classification.should_fallback:
                logger.error(
                    "fallback_not_eligible",
                    provider=policy.primary_provider_label,
                    error_kind=classification.kind.value,
                )
                raise

            logger.info(
                "fallback_attempt_started",
                provider=policy.fallback_provider_label,
                max_retries=policy.fallback_max_retries,
            )
            fallback_start = time.perf_counter()

            fallback_error: Optional[Exception] = None
            try:
                result = await fallback(policy.fallback_max_retries)
            except Exception as exc:
                fallback_error = exc

            if fallback_error is not None:
                fallback_classification = classify_error(fallback_error)
                logger.error(
                    "fallback_attempt_failed",
                    provider=policy.fallback_provider_label,
                    total_elapsed_ms=_elapsed_ms(start),
                    error_kind=fallback_classification.kind.value,
                    description=fallback_classification.description,
                    error=str(fallback_error),
                )
                # Surface the primary failure, not the fallback's
                raise

            logger.info(
                "fallback_attempt_succeeded",
                provider=policy.fallback_provider_label,
                elapsed_ms=_elapsed_ms(fallback_start),
                total_elapsed_ms=_elapsed_ms(start),
            )
            return result

        logger.debug(
            "primary_attempt_succeeded",
            provider=policy.primary_provider_label,
            elapsed_ms=_elapsed_ms(start),
        )
        return result


async def with_fallback(
    primary: ProviderOperation[T],
    fallback: ProviderOperation[T],
    policy: FallbackPolicy,
) -> T:
    """Functional shortcut for :meth:`FallbackOrchestrator.run`."""
    return await FallbackOrchestrator().run(primary, fallback, policy)
