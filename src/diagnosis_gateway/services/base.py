"""Shared wiring for the generation and embedding gateways."""

from typing import Any, Optional

from diagnosis_gateway.config import Settings
from diagnosis_gateway.exceptions import ConfigurationError, GatewayProviderError
from diagnosis_gateway.orchestrator import FallbackOrchestrator, extract_status_code
from diagnosis_gateway.providers import ProviderRegistry
from diagnosis_gateway.schemas import FallbackPolicy, ModelConfig

# Raised to callers unchanged by the gateways
PASSTHROUGH_ERRORS = (ConfigurationError, GatewayProviderError)


def _upstream_message(error: BaseException) -> str:
    """Prefer the provider's own ``error.message`` from the response body."""
    body: Any = getattr(error, "body", None)
    if body is None:
        response = getattr(error, "response", None)
        if response is not None:
            try:
                body = response.json()
            except Exception:
                body = None

    if isinstance(body, dict):
        inner = body.get("error")
        if isinstance(inner, dict) and isinstance(inner.get("message"), str):
            return inner["message"]
        if isinstance(inner, str):
            return inner
        if isinstance(body.get("message"), str):
            return body["message"]

    return str(error)


def provider_error_from(error: BaseException, provider: str) -> BaseException:
    """Wrap a raw provider failure into one :class:`GatewayProviderError`.

    Gateway errors (configuration problems, already wrapped failures) are
    returned unchanged.
    """
    if isinstance(error, (ConfigurationError, GatewayProviderError)):
        return error

    status = extract_status_code(error)
    message = _upstream_message(error)
    if status is not None:
        text = f"Provider error ({provider}, status {status}): {message}"
    elif message:
        text = f"Provider error ({provider}): {message}"
    else:
        text = f"Unknown provider error ({provider})"

    return GatewayProviderError(text, provider=provider, upstream_status=status, cause=error)


class Gateway:
    """Policy building and error wrapping common to both gateways."""

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Optional[Settings] = None,
        enable_fallback: Optional[bool] = None,
        orchestrator: Optional[FallbackOrchestrator] = None,
    ):
        self.registry = registry
        self.settings = settings or registry.settings
        self.enable_fallback = (
            self.settings.enable_fallback if enable_fallback is None else enable_fallback
        )
        self.orchestrator = orchestrator or FallbackOrchestrator()

    def build_policy(
        self,
        primary: ModelConfig,
        fallback: ModelConfig,
        enable_fallback: Optional[bool] = None,
    ) -> FallbackPolicy:
        enabled = self.enable_fallback if enable_fallback is None else enable_fallback
        return FallbackPolicy(
            enabled=enabled,
            primary_max_retries=self.settings.primary_max_retries,
            fallback_max_retries=self.settings.fallback_max_retries,
            primary_provider_label=primary.label,
            fallback_provider_label=fallback.label,
        )

    def available_providers(self):
        return self.registry.available_providers()

    def default_models(self):
        return self.registry.default_models
