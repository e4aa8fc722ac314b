"""
Request, result and policy models shared by the gateway components.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ProviderId(str, Enum):
    """Built-in provider identifiers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    DEEPINFRA = "deepinfra"
    E2E = "e2e"


def provider_key(provider: Union[ProviderId, str]) -> str:
    """Normalize a provider id or plain string to its registry key."""
    if isinstance(provider, Enum):
        provider = provider.value
    return str(provider).strip().lower()


@dataclass(frozen=True)
class ModelConfig:
    """Identifies one callable model.

    Equality and hashing only consider ``(provider, model_id)``; ``settings``
    is forwarded untouched to the provider call.
    """

    provider: str
    model_id: str
    settings: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "provider", provider_key(self.provider))

    @property
    def label(self) -> str:
        return f"{self.provider}:{self.model_id}"


@dataclass(frozen=True)
class DefaultModels:
    """Process-wide default primary and fallback models."""

    llm_primary: ModelConfig
    llm_fallback: ModelConfig
    embedding_primary: ModelConfig
    embedding_fallback: ModelConfig

    @classmethod
    def from_settings(cls, settings) -> "DefaultModels":
        return cls(
            llm_primary=ModelConfig(settings.llm_primary_provider, settings.llm_primary_model),
            llm_fallback=ModelConfig(settings.llm_fallback_provider, settings.llm_fallback_model),
            embedding_primary=ModelConfig(
                settings.embedding_primary_provider, settings.embedding_primary_model
            ),
            embedding_fallback=ModelConfig(
                settings.embedding_fallback_provider, settings.embedding_fallback_model
            ),
        )

    def as_dict(self) -> Dict[str, Dict[str, Dict[str, str]]]:
        def _entry(config: ModelConfig) -> Dict[str, str]:
            return {"provider": config.provider, "model_id": config.model_id}

        return {
            "llm": {"primary": _entry(self.llm_primary), "fallback": _entry(self.llm_fallback)},
            "embedding": {
                "primary": _entry(self.embedding_primary),
                "fallback": _entry(self.embedding_fallback),
            },
        }


@dataclass(frozen=True)
class FallbackPolicy:
    """Fully determines orchestrator behaviour for one invocation."""

    enabled: bool = True
    primary_max_retries: int = 2
    fallback_max_retries: int = 2
    primary_provider_label: str = "primary"
    fallback_provider_label: str = "fallback"


class ErrorKind(str, Enum):
    """Failure taxonomy for provider errors."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    RATE_LIMIT = "rate_limit"
    AUTH = "auth"
    MODEL_UNAVAILABLE = "model_unavailable"


@dataclass(frozen=True)
class ErrorClassification:
    should_fallback: bool
    kind: ErrorKind
    description: str


class ChatMessage(BaseModel):
    """Represents a single chat message."""

    role: str = Field(..., description="Message role (system, user, assistant)")
    content: str = Field(..., description="Message content")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "role": "user",
                "content": "Patient presents with fever and headache. Likely diagnosis?",
            }
        }
    )


class GenerationRequest(BaseModel):
    """Request for a text generation."""

    messages: List[ChatMessage] = Field(..., min_length=1, description="Message history")
    temperature: Optional[float] = Field(default=None, ge=0, le=2, description="Sampling temperature")
    max_output_tokens: Optional[int] = Field(default=None, gt=0, description="Maximum tokens in response")
    top_p: Optional[float] = Field(default=None, ge=0, le=1, description="Nucleus sampling")
    stop: Optional[List[str]] = Field(default=None, description="Stop sequences")

    @classmethod
    def from_prompt(cls, prompt: str, system: Optional[str] = None, **kwargs) -> "GenerationRequest":
        messages = []
        if system:
            messages.append(ChatMessage(role="system", content=system))
        messages.append(ChatMessage(role="user", content=prompt))
        return cls(messages=messages, **kwargs)

    def sampling_options(self, settings: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Merge model settings with the request's explicit sampling options."""
        options: Dict[str, Any] = dict(settings or {})
        for key in ("temperature", "max_output_tokens", "top_p", "stop"):
            value = getattr(self, key)
            if value is not None:
                options[key] = value
        return options


class TokenUsage(BaseModel):
    """Token usage statistics."""

    prompt_tokens: int = Field(default=0, description="Number of tokens in the prompt")
    completion_tokens: int = Field(default=0, description="Number of tokens in the completion")
    total_tokens: int = Field(default=0, description="Total number of tokens")


class GenerationResult(BaseModel):
    """Result of a text generation."""

    text: str = Field(..., description="Generated text")
    usage: TokenUsage = Field(default_factory=TokenUsage, description="Token usage")
    provider: str = Field(..., description="Provider that produced the text")
    model: str = Field(..., description="Model that produced the text")
    finish_reason: Optional[str] = Field(default=None, description="Completion finish reason")


class StreamChunk(BaseModel):
    """A chunk of streamed response."""

    content: str = Field(default="", description="Chunk content")
    is_final: bool = Field(default=False, description="Whether this is the final chunk")
    usage: Optional[TokenUsage] = Field(default=None, description="Token usage (if final)")


class EmbeddingUsage(BaseModel):
    tokens: int = Field(default=0, description="Input tokens consumed")


class EmbeddingResult(BaseModel):
    """Embedding for a single value."""

    embedding: List[float]
    usage: EmbeddingUsage = Field(default_factory=EmbeddingUsage)
    provider: str
    model: str


class EmbeddingBatchResult(BaseModel):
    """Embeddings for several values, parallel to the input order."""

    embeddings: List[List[float]]
    usage: EmbeddingUsage = Field(default_factory=EmbeddingUsage)
    provider: str
    model: str
