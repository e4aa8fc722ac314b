"""
OpenAI provider implementation on the official SDK, also used for DeepInfra's
OpenAI-compatible endpoint.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

import httpx
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam

from diagnosis_gateway.exceptions import ProviderResponseError
from diagnosis_gateway.providers.base import BaseProvider, TextStream
from diagnosis_gateway.schemas import (
    ChatMessage,
    EmbeddingBatchResult,
    EmbeddingUsage,
    GenerationResult,
    StreamChunk,
    TokenUsage,
)

DEEPINFRA_BASE_URL = "https://api.deepinfra.com/v1/openai"


class OpenAIProvider(BaseProvider):
    """OpenAI chat, streaming and embeddings.

    The retry budget is handed to the SDK's own ``max_retries`` per call.
    """

    provider_id = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> None:
        super().__init__(api_key, base_url=base_url, timeout=timeout, **kwargs)
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            timeout=timeout,
            max_retries=0,  # budget is set per call
            http_client=http_client,
        )

    def _client(self, max_retries: int) -> AsyncOpenAI:
        return self.client.with_options(max_retries=max_retries)

    @staticmethod
    def _messages(messages: Sequence[ChatMessage]) -> List[ChatCompletionMessageParam]:
        return [{"role": msg.role, "content": msg.content} for msg in messages]  # type: ignore[misc]

    @staticmethod
    def _params(options: Mapping[str, Any]) -> Dict[str, Any]:
        # Build kwargs to avoid passing None values
        params: Dict[str, Any] = {}
        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        if options.get("max_output_tokens") is not None:
            params["max_tokens"] = options["max_output_tokens"]
        if options.get("top_p") is not None:
            params["top_p"] = options["top_p"]
        if options.get("stop"):
            params["stop"] = options["stop"]
        for key in ("frequency_penalty", "presence_penalty", "seed", "user"):
            if options.get(key) is not None:
                params[key] = options[key]
        return params

    async def generate(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> GenerationResult:
        self._log_request(model_id, "generate", message_count=len(messages))

        response = await self._client(max_retries).chat.completions.create(
            model=model_id,
            messages=self._messages(messages),
            **self._params(options),
        )

        if not response.choices:
            raise ProviderResponseError(
                f"Provider {self.provider_id} returned no choices", provider=self.provider_id
            )
        choice = response.choices[0]

        usage = TokenUsage()
        if response.usage:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        self._log_response(model_id, "generate", usage.model_dump())

        return GenerationResult(
            text=choice.message.content or "",
            usage=usage,
            provider=self.provider_id,
            model=response.model or model_id,
            finish_reason=choice.finish_reason,
        )

    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> TextStream:
        self._log_request(model_id, "stream", message_count=len(messages))

        stream = await self._client(max_retries).chat.completions.create(
            model=model_id,
            messages=self._messages(messages),
            stream=True,
            stream_options={"include_usage": True},
            **self._params(options),
        )
        return TextStream(
            self._stream_chunks(stream),
            provider=self.provider_id,
            model=model_id,
            close=stream.close,
        )

    async def _stream_chunks(self, stream) -> AsyncIterator[StreamChunk]:
        usage = None
        async for chunk in stream:
            if chunk.usage:
                usage = TokenUsage(
                    prompt_tokens=chunk.usage.prompt_tokens,
                    completion_tokens=chunk.usage.completion_tokens,
                    total_tokens=chunk.usage.total_tokens,
                )
            if chunk.choices and chunk.choices[0].delta.content:
                yield StreamChunk(content=chunk.choices[0].delta.content)
        yield StreamChunk(is_final=True, usage=usage or TokenUsage())

    async def embed(
        self,
        model_id: str,
        values: Sequence[str],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> EmbeddingBatchResult:
        self._log_request(model_id, "embed", value_count=len(values))

        params: Dict[str, Any] = {}
        if options.get("dimensions"):
            params["dimensions"] = options["dimensions"]
        response = await self._client(max_retries).embeddings.create(
            model=model_id,
            input=list(values),
            encoding_format="float",
            **params,
        )

        items = sorted(response.data, key=lambda item: item.index)
        if len(items) != len(values):
            raise ProviderResponseError(
                f"Provider {self.provider_id} returned {len(items)} embeddings for {len(values)} values",
                provider=self.provider_id,
            )
        return EmbeddingBatchResult(
            embeddings=[list(item.embedding) for item in items],
            usage=EmbeddingUsage(tokens=response.usage.prompt_tokens if response.usage else 0),
            provider=self.provider_id,
            model=response.model or model_id,
        )

    async def aclose(self) -> None:
        await self.client.close()


class DeepInfraProvider(OpenAIProvider):
    """DeepInfra through its OpenAI-compatible endpoint."""

    provider_id = "deepinfra"

    def __init__(self, api_key: str, base_url: Optional[str] = None, **kwargs) -> None:
        super().__init__(api_key, base_url=base_url or DEEPINFRA_BASE_URL, **kwargs)
