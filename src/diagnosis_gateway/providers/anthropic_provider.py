"""
Anthropic provider implementation on the official SDK. Chat and streaming only.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx
from anthropic import AsyncAnthropic

from diagnosis_gateway.providers.base import BaseProvider, TextStream
from diagnosis_gateway.schemas import ChatMessage, GenerationResult, StreamChunk, TokenUsage

DEFAULT_MAX_TOKENS = 2048  # Anthropic requires max_tokens


def to_anthropic_messages(
    messages: Sequence[ChatMessage],
) -> Tuple[Optional[str], List[Dict[str, str]]]:
    """Convert messages to Anthropic format.

    System messages are concatenated into the separate system prompt, the
    conversation must start with a user turn and consecutive turns of the
    same role are merged.
    """
    system_message = None
    anthropic_messages: List[Dict[str, str]] = []

    for msg in messages:
        if msg.role == "system":
            if system_message:
                system_message += "\n\n" + msg.content
            else:
                system_message = msg.content
        elif msg.role in ("user", "assistant"):
            anthropic_messages.append({"role": msg.role, "content": msg.content})

    if not anthropic_messages or anthropic_messages[0]["role"] != "user":
        anthropic_messages.insert(0, {"role": "user", "content": "Please continue."})

    cleaned_messages: List[Dict[str, str]] = []
    for msg in anthropic_messages:
        if cleaned_messages and cleaned_messages[-1]["role"] == msg["role"]:
            cleaned_messages[-1]["content"] += "\n\n" + msg["content"]
        else:
            cleaned_messages.append(dict(msg))

    return system_message, cleaned_messages


class AnthropicProvider(BaseProvider):
    """Anthropic chat and streaming; Anthropic has no embedding models."""

    provider_id = "anthropic"
    supports_embeddings = False

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> None:
        super().__init__(api_key, base_url=base_url, timeout=timeout, **kwargs)
        http_client = httpx.AsyncClient(transport=transport) if transport is not None else None
        self.client = AsyncAnthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,  # budget is set per call
            http_client=http_client,
        )

    def _request_params(
        self, model_id: str, messages: Sequence[ChatMessage], options: Mapping[str, Any]
    ) -> Dict[str, Any]:
        system_message, cleaned_messages = to_anthropic_messages(messages)
        params: Dict[str, Any] = {
            "model": model_id,
            "messages": cleaned_messages,
            "max_tokens": options.get("max_output_tokens") or DEFAULT_MAX_TOKENS,
        }
        if system_message:
            params["system"] = system_message
        if options.get("temperature") is not None:
            params["temperature"] = options["temperature"]
        if options.get("top_p") is not None:
            params["top_p"] = options["top_p"]
        if options.get("top_k") is not None:
            params["top_k"] = options["top_k"]
        if options.get("stop"):
            params["stop_sequences"] = options["stop"]
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

        response = await self.client.with_options(max_retries=max_retries).messages.create(
            **self._request_params(model_id, messages, options)
        )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        self._log_response(model_id, "generate", usage.model_dump())

        return GenerationResult(
            text=text,
            usage=usage,
            provider=self.provider_id,
            model=response.model or model_id,
            finish_reason=response.stop_reason,
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

        stream = await self.client.with_options(max_retries=max_retries).messages.create(
            stream=True, **self._request_params(model_id, messages, options)
        )
        return TextStream(
            self._stream_chunks(stream),
            provider=self.provider_id,
            model=model_id,
            close=stream.close,
        )

    async def _stream_chunks(self, stream) -> AsyncIterator[StreamChunk]:
        input_tokens = 0
        output_tokens = 0
        async for event in stream:
            if event.type == "message_start":
                input_tokens = event.message.usage.input_tokens
            elif event.type == "content_block_delta" and event.delta.type == "text_delta":
                if event.delta.text:
                    yield StreamChunk(content=event.delta.text)
            elif event.type == "message_delta":
                output_tokens = event.usage.output_tokens
        yield StreamChunk(
            is_final=True,
            usage=TokenUsage(
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
                total_tokens=input_tokens + output_tokens,
            ),
        )

    async def aclose(self) -> None:
        await self.client.close()
