"""Provider registry.

Built once at start-up from :class:`Settings` and passed to every gateway.
After construction it is only read, so it is safe to share between any
number of concurrent requests.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

import httpx

from diagnosis_gateway.config import Settings, get_settings
from diagnosis_gateway.exceptions import ConfigurationError
from diagnosis_gateway.providers.anthropic_provider import AnthropicProvider
from diagnosis_gateway.providers.base import BaseProvider, EmbeddingModel, LanguageModel
from diagnosis_gateway.providers.google_provider import GoogleProvider
from diagnosis_gateway.providers.openai_compatible import create_e2e_provider
from diagnosis_gateway.providers.openai_provider import DeepInfraProvider, OpenAIProvider
from diagnosis_gateway.schemas import DefaultModels, ModelConfig, ProviderId, provider_key
from diagnosis_gateway.telemetry import get_logger

logger = get_logger(__name__)

ProviderFactory = Callable[[Settings, Optional[httpx.AsyncBaseTransport]], BaseProvider]


def _common(settings: Settings, transport: Optional[httpx.AsyncBaseTransport]) -> Dict:
    return {
        "timeout": settings.request_timeout,
        "retry_min_wait": settings.retry_min_wait,
        "retry_max_wait": settings.retry_max_wait,
        "transport": transport,
    }


def build_openai(settings: Settings, transport=None) -> BaseProvider:
    return OpenAIProvider(
        settings.api_key_for("openai"),
        base_url=settings.openai_base_url,
        organization=settings.openai_organization,
        **_common(settings, transport),
    )


def build_anthropic(settings: Settings, transport=None) -> BaseProvider:
    return AnthropicProvider(
        settings.api_key_for("anthropic"),
        base_url=settings.anthropic_base_url,
        **_common(settings, transport),
    )


def build_google(settings: Settings, transport=None) -> BaseProvider:
    return GoogleProvider(
        settings.api_key_for("google"),
        base_url=settings.google_base_url,
        **_common(settings, transport),
    )


def build_deepinfra(settings: Settings, transport=None) -> BaseProvider:
    return DeepInfraProvider(
        settings.api_key_for("deepinfra"),
        base_url=settings.deepinfra_base_url,
        **_common(settings, transport),
    )


def build_e2e(settings: Settings, transport=None) -> BaseProvider:
    return create_e2e_provider(
        settings.api_key_for("e2e"),
        base_url=settings.e2e_base_url,
        **_common(settings, transport),
    )


@dataclass(frozen=True)
class ProviderSpec:
    provider_id: str
    factory: ProviderFactory
    supports_embeddings: bool = True


BUILTIN_PROVIDERS = (
    ProviderSpec(ProviderId.E2E.value, build_e2e, supports_embeddings=False),
    ProviderSpec(ProviderId.OPENAI.value, build_openai),
    ProviderSpec(ProviderId.ANTHROPIC.value, build_anthropic, supports_embeddings=False),
    ProviderSpec(ProviderId.DEEPINFRA.value, build_deepinfra),
    ProviderSpec(ProviderId.GOOGLE.value, build_google),
)


class ProviderRegistry:
    """Maps provider ids to constructed providers and hands out model handles.

    Providers whose credential is missing are remembered as unconfigured:
    start-up succeeds and resolving them raises :class:`ConfigurationError`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_models: Optional[DefaultModels] = None,
        include_builtin: bool = True,
    ):
        self.settings = settings or get_settings()
        self.default_models = default_models or DefaultModels.from_settings(self.settings)
        self._transport = transport
        self._specs: Dict[str, ProviderSpec] = {}
        self._providers: Dict[str, BaseProvider] = {}
        self._unconfigured: Dict[str, str] = {}

        if include_builtin:
            for spec in BUILTIN_PROVIDERS:
                self._add(spec)

        logger.info(
            "provider_registry_initialized",
            configured=sorted(self._providers),
            unconfigured=sorted(self._unconfigured),
        )

    def register_provider(
        self,
        provider_id: Union[ProviderId, str],
        factory: ProviderFactory,
        supports_embeddings: bool = True,
    ) -> None:
        """Register an additional provider constructor. Call during start-up only."""
        key = provider_key(provider_id)
        self._add(ProviderSpec(key, factory, supports_embeddings=supports_embeddings))

    def _add(self, spec: ProviderSpec) -> None:
        self._specs[spec.provider_id] = spec
        self._providers.pop(spec.provider_id, None)
        self._unconfigured.pop(spec.provider_id, None)
        try:
            self._providers[spec.provider_id] = spec.factory(self.settings, self._transport)
        except ConfigurationError as exc:
            self._unconfigured[spec.provider_id] = exc.message
            logger.warning(
                "provider_not_configured", provider=spec.provider_id, reason=exc.message
            )

    def get_provider(self, provider: Union[ProviderId, str]) -> BaseProvider:
        key = provider_key(provider)
        if key in self._providers:
            return self._providers[key]
        if key in self._unconfigured:
            raise ConfigurationError(self._unconfigured[key], provider=key)
        raise ConfigurationError(f"Unknown provider: {key}", provider=key)

    def resolve_generation_model(self, config: Optional[ModelConfig] = None) -> LanguageModel:
        config = config or self.default_models.llm_primary
        return self.get_provider(config.provider).language_model(config)

    def resolve_embedding_model(self, config: Optional[ModelConfig] = None) -> EmbeddingModel:
        config = config or self.default_models.embedding_primary
        spec = self._specs.get(config.provider)
        if spec is not None and not spec.supports_embeddings:
            raise ConfigurationError(
                f"Provider '{config.provider}' doesn't support embedding models. "
                f"Use one of: {', '.join(self.available_providers()['embedding'])}",
                provider=config.provider,
            )
        return self.get_provider(config.provider).embedding_model(config)

    def available_providers(self) -> Dict[str, List[str]]:
        return {
            "llm": list(self._specs),
            "embedding": [key for key, spec in self._specs.items() if spec.supports_embeddings],
        }

    def is_configured(self, provider: Union[ProviderId, str]) -> bool:
        return provider_key(provider) in self._providers

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
