"""Embeddings across providers with automatic fallback, plus vector helpers.

Example::

    embedding = EmbeddingGateway(registry)

    result = await embedding.embed("chest pain radiating to left arm")
    batch = await embedding.embed_many(["fever", "night sweats"])

    similarity = embedding.cosine_similarity(batch.embeddings[0], batch.embeddings[1])
"""

from typing import List, Optional, Sequence

import numpy as np

from diagnosis_gateway.exceptions import ConfigurationError, ProviderResponseError
from diagnosis_gateway.schemas import EmbeddingBatchResult, EmbeddingResult, ModelConfig
from diagnosis_gateway.services.base import PASSTHROUGH_ERRORS, Gateway, provider_error_from
from diagnosis_gateway.telemetry import get_logger

logger = get_logger(__name__)


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Calculate cosine similarity between two vectors.

    Returns 0.0 when either vector has zero magnitude.
    """
    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)
    if a.shape != b.shape:
        raise ConfigurationError(
            f"Vectors must have the same length (got {a.size} and {b.size})"
        )

    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / norm, -1.0, 1.0))


def average_embeddings(embeddings: Sequence[Sequence[float]]) -> List[float]:
    """Component-wise mean of several embeddings, e.g. a centroid.

    NaN components count as zero in the sum; the divisor is always the
    number of embeddings.
    """
    if len(embeddings) == 0 or len(embeddings[0]) == 0:
        raise ConfigurationError("Invalid input: Empty array or empty inner arrays")

    dimensions = len(embeddings[0])
    if any(len(embedding) != dimensions for embedding in embeddings):
        raise ConfigurationError("Invalid input: Inconsistent dimensions in embeddings")

    matrix = np.asarray(embeddings, dtype=np.float64)
    return (np.nansum(matrix, axis=0) / len(embeddings)).tolist()


class EmbeddingGateway(Gateway):
    """Embedding façade over the registry and the fallback orchestrator."""

    def _models(self, model: Optional[ModelConfig]):
        defaults = self.registry.default_models
        return model or defaults.embedding_primary, defaults.embedding_fallback

    async def embed(
        self,
        value: str,
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
    ) -> EmbeddingResult:
        """Embed a single value with the given (or default) model."""
        batch = await self.embed_many([value], model=model, enable_fallback=enable_fallback)
        return EmbeddingResult(
            embedding=batch.embeddings[0],
            usage=batch.usage,
            provider=batch.provider,
            model=batch.model,
        )

    async def embed_many(
        self,
        values: Sequence[str],
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
    ) -> EmbeddingBatchResult:
        """Embed several values; embeddings come back in input order."""
        if not values:
            raise ConfigurationError("Invalid input: no values to embed")

        values = list(values)
        primary, fallback = self._models(model)

        def _runner(config: ModelConfig):
            async def run(max_retries: int) -> EmbeddingBatchResult:
                handle = self.registry.resolve_embedding_model(config)
                result = await handle.embed_many(values, max_retries)
                if len(result.embeddings) != len(values):
                    logger.warning(
                        "embedding_count_mismatch",
                        provider=config.provider,
                        model=config.model_id,
                        expected=len(values),
                        received=len(result.embeddings),
                    )
                    raise ProviderResponseError(
                        f"{config.label} returned {len(result.embeddings)} embeddings "
                        f"for {len(values)} values",
                        provider=config.provider,
                    )
                return result

            return run

        try:
            return await self.orchestrator.run(
                _runner(primary),
                _runner(fallback),
                self.build_policy(primary, fallback, enable_fallback),
            )
        except PASSTHROUGH_ERRORS:
            raise
        except Exception as exc:
            raise provider_error_from(exc, primary.provider) from exc

    cosine_similarity = staticmethod(cosine_similarity)
    average_embeddings = staticmethod(average_embeddings)
