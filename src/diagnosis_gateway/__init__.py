__version__ = "1.0.0"


def get_version():
    return __version__


from diagnosis_gateway.config import Settings, get_settings
from diagnosis_gateway.exceptions import (
    ConfigurationError,
    GatewayError,
    GatewayProviderError,
    ProviderResponseError,
)
from diagnosis_gateway.providers import ProviderRegistry
from diagnosis_gateway.schemas import GenerationRequest, ModelConfig, ProviderId
from diagnosis_gateway.services import EmbeddingGateway, GenerationGateway

__all__ = [
    "__version__",
    "get_version",
    "Settings",
    "get_settings",
    "ConfigurationError",
    "GatewayError",
    "GatewayProviderError",
    "ProviderResponseError",
    "ProviderRegistry",
    "GenerationRequest",
    "ModelConfig",
    "ProviderId",
    "EmbeddingGateway",
    "GenerationGateway",
]
