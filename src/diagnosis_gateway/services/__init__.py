from .base import Gateway, provider_error_from
from .embedding import EmbeddingGateway, average_embeddings, cosine_similarity
from .generation import GenerationGateway, ObjectStream

__all__ = [
    "Gateway",
    "provider_error_from",
    "EmbeddingGateway",
    "average_embeddings",
    "cosine_similarity",
    "GenerationGateway",
    "ObjectStream",
]
