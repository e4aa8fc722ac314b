from .gateway import (
    ChatMessage,
    DefaultModels,
    EmbeddingBatchResult,
    EmbeddingResult,
    EmbeddingUsage,
    ErrorClassification,
    ErrorKind,
    FallbackPolicy,
    GenerationRequest,
    GenerationResult,
    ModelConfig,
    ProviderId,
    StreamChunk,
    TokenUsage,
    provider_key,
)

__all__ = [
    "ChatMessage",
    "DefaultModels",
    "EmbeddingBatchResult",
    "EmbeddingResult",
    "EmbeddingUsage",
    "ErrorClassification",
    "ErrorKind",
    "FallbackPolicy",
    "GenerationRequest",
    "GenerationResult",
    "ModelConfig",
    "ProviderId",
    "StreamChunk",
    "TokenUsage",
    "provider_key",
]
