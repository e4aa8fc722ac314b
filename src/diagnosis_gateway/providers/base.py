"""
Base provider abstract class and the model handles handed out by the registry.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from diagnosis_gateway.exceptions import ConfigurationError
from diagnosis_gateway.orchestrator.retry_handler import RetryHandler
from diagnosis_gateway.schemas import (
    ChatMessage,
    EmbeddingBatchResult,
    GenerationRequest,
    GenerationResult,
    ModelConfig,
    StreamChunk,
    TokenUsage,
)
from diagnosis_gateway.telemetry import get_logger

logger = get_logger(__name__)

ErrorCallback = Callable[[BaseException], Any]


class TextStream:
    """A live sequence of text chunks from an established provider stream.

    Iterating yields content chunks followed by one final chunk carrying the
    token usage. Failures while iterating are reported to ``on_error`` and
    re-raised to the consumer; they never trigger a fallback.

    ``close`` releases the underlying connection. Consumers that stop early,
    or never iterate at all, call :meth:`aclose` (or use ``async with``) so
    the upstream response is not left open.
    """

    def __init__(
        self,
        chunks: AsyncIterator[StreamChunk],
        provider: str,
        model: str,
        on_error: Optional[ErrorCallback] = None,
        close: Optional[Callable[[], Awaitable[Any]]] = None,
    ):
        self._chunks = chunks
        self._close = close
        self.provider = provider
        self.model = model
        self.on_error = on_error
        self.usage: Optional[TokenUsage] = None

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        try:
            async for chunk in self._chunks:
                if chunk.is_final:
                    self.usage = chunk.usage
                yield chunk
        except Exception as exc:
            logger.error(
                "stream_interrupted",
                provider=self.provider,
                model=self.model,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if self.on_error:
                self.on_error(exc)
            raise

    async def text(self) -> str:
        """Consume the stream and return the concatenated text."""
        parts = []
        async for chunk in self:
            parts.append(chunk.content)
        return "".join(parts)

    async def aclose(self) -> None:
        try:
            aclose = getattr(self._chunks, "aclose", None)
            if aclose is not None:
                await aclose()
        finally:
            if self._close is not None:
                await self._close()

    async def __aenter__(self) -> "TextStream":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class BaseProvider(ABC):
    """Abstract base class for AI providers.

    One instance per provider is built at start-up and shared by every
    in-flight request, so implementations keep no per-request state.
    """

    provider_id: str = "base"
    supports_embeddings: bool = True

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        retry_min_wait: float = 0.5,
        retry_max_wait: float = 8.0,
    ):
        """
        Initialize the provider.

        Args:
            api_key: API key for the provider
            base_url: Base URL override for the provider API
            timeout: Request timeout in seconds
            retry_min_wait: Minimum backoff between retries in seconds
            retry_max_wait: Maximum backoff between retries in seconds
        """
        if not api_key:
            raise ConfigurationError(
                f"Missing API key for provider '{self.provider_id}'", provider=self.provider_id
            )
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait

    @abstractmethod
    async def generate(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> GenerationResult:
        """
        Generate a chat completion.

        Args:
            model_id: Model identifier
            messages: Message history
            max_retries: Retry budget for this call
            options: Sampling options (temperature, max_output_tokens, top_p, stop)

        Returns:
            GenerationResult: The completion

        Raises:
            Exception: the provider's own error once the retry budget is spent
        """

    @abstractmethod
    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> TextStream:
        """Establish a streaming completion.

        Returns once the provider accepted the request; the retry budget
        only covers establishment.
        """

    async def embed(
        self,
        model_id: str,
        values: Sequence[str],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> EmbeddingBatchResult:
        raise ConfigurationError(
            f"Provider '{self.provider_id}' doesn't support embedding models",
            provider=self.provider_id,
        )

    def default_model(self, kind: str = "chat") -> Optional[str]:
        """Model id to use when the caller names only the provider."""
        return None

    async def aclose(self) -> None:
        """Release the underlying HTTP resources."""

    def retry_handler(self, max_retries: int) -> RetryHandler:
        return RetryHandler(
            max_retries=max_retries,
            min_wait=self.retry_min_wait,
            max_wait=self.retry_max_wait,
        )

    def language_model(self, config: ModelConfig) -> "LanguageModel":
        return LanguageModel(self, config)

    def embedding_model(self, config: ModelConfig) -> "EmbeddingModel":
        if not self.supports_embeddings:
            raise ConfigurationError(
                f"Provider '{self.provider_id}' doesn't support embedding models",
                provider=self.provider_id,
            )
        return EmbeddingModel(self, config)

    def _log_request(self, model_id: str, operation: str, **fields) -> None:
        logger.debug(
            "provider_request",
            provider=self.provider_id,
            model=model_id,
            operation=operation,
            **fields,
        )

    def _log_response(self, model_id: str, operation: str, usage: Optional[Dict] = None) -> None:
        logger.debug(
            "provider_response",
            provider=self.provider_id,
            model=model_id,
            operation=operation,
            usage=usage,
        )


class LanguageModel:
    """A provider bound to one generation model."""

    def __init__(self, provider: BaseProvider, config: ModelConfig):
        self.provider = provider
        self.config = config

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id

    @property
    def model_id(self) -> str:
        return self.config.model_id

    async def generate(self, request: GenerationRequest, max_retries: int) -> GenerationResult:
        return await self.provider.generate(
            self.config.model_id,
            request.messages,
            max_retries=max_retries,
            options=request.sampling_options(self.config.settings),
        )

    async def stream(self, request: GenerationRequest, max_retries: int) -> TextStream:
        return await self.provider.stream(
            self.config.model_id,
            request.messages,
            max_retries=max_retries,
            options=request.sampling_options(self.config.settings),
        )

    def __repr__(self) -> str:
        return f"LanguageModel({self.config.label})"


class EmbeddingModel:
    """A provider bound to one embedding model."""

    def __init__(self, provider: BaseProvider, config: ModelConfig):
        self.provider = provider
        self.config = config

    @property
    def provider_id(self) -> str:
        return self.provider.provider_id

    @property
    def model_id(self) -> str:
        return self.config.model_id

    async def embed_many(self, values: List[str], max_retries: int) -> EmbeddingBatchResult:
        return await self.provider.embed(
            self.config.model_id,
            values,
            max_retries=max_retries,
            options=dict(self.config.settings),
        )

    def __repr__(self) -> str:
        return f"EmbeddingModel({self.config.label})"
