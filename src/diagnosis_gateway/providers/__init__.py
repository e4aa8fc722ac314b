from .base import BaseProvider, EmbeddingModel, LanguageModel, TextStream
from .openai_compatible import (
    CustomProviderConfig,
    OpenAICompatibleProvider,
    UrlPattern,
    build_url,
    create_e2e_provider,
)
from .registry import ProviderRegistry, ProviderSpec

__all__ = [
    "BaseProvider",
    "EmbeddingModel",
    "LanguageModel",
    "TextStream",
    "CustomProviderConfig",
    "OpenAICompatibleProvider",
    "UrlPattern",
    "build_url",
    "create_e2e_provider",
    "ProviderRegistry",
    "ProviderSpec",
]
