"""
Generic adapter for OpenAI-compatible endpoints.

Vendors whose API only differs from OpenAI in URL layout are configured
with a :class:`UrlPattern` instead of a bespoke client:

- ``standard``: ``{base_url}{path}`` (plus optional query parameters)
- ``model-in-path``: ``{base_url}/{model_id}/v1{path}`` (E2E Networks)
- ``custom``: a caller-supplied ``url_builder(base_url, model_id, path)``

Only the chat and embedding endpoints are spoken; legacy ``/completions``
models are not exposed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence
from urllib.parse import urlencode

import httpx

from diagnosis_gateway.exceptions import ConfigurationError, ProviderResponseError
from diagnosis_gateway.providers.base import TextStream
from diagnosis_gateway.providers.http_base import HTTPProvider
from diagnosis_gateway.schemas import (
    ChatMessage,
    EmbeddingBatchResult,
    EmbeddingUsage,
    GenerationResult,
    StreamChunk,
    TokenUsage,
)

UrlBuilder = Callable[[str, str, str], str]

E2E_USER_AGENT = "EBM-Diagnosis-Service/1.0"

E2E_MODELS = {
    "chat": {
        "qwen-2.5-72b": "qwen2_5_72b_instruct",
    },
}


class UrlPattern(str, Enum):
    STANDARD = "standard"
    MODEL_IN_PATH = "model-in-path"
    CUSTOM = "custom"


@dataclass
class CustomProviderConfig:
    """Describes one OpenAI-compatible vendor."""

    name: str
    base_url: str
    api_key: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, str] = field(default_factory=dict)
    url_pattern: UrlPattern = UrlPattern.STANDARD
    url_builder: Optional[UrlBuilder] = None
    supports_embeddings: bool = True
    default_models: Dict[str, str] = field(default_factory=dict)
    # friendly name -> vendor model id
    model_aliases: Dict[str, str] = field(default_factory=dict)


def build_url(config: CustomProviderConfig, base_url: str, model_id: str, path: str) -> str:
    """Build the request URL for ``path`` according to the vendor's URL pattern."""
    pattern = UrlPattern(config.url_pattern)

    if pattern is UrlPattern.MODEL_IN_PATH:
        return f"{base_url}/{model_id}/v1{path}"

    if pattern is UrlPattern.CUSTOM:
        if config.url_builder is None:
            raise ConfigurationError(
                "url_builder is required when url_pattern is 'custom'", provider=config.name
            )
        return config.url_builder(base_url, model_id, path)

    url = f"{base_url}{path}"
    if config.query_params:
        url = f"{url}?{urlencode(config.query_params)}"
    return url


def _to_openai_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def _chat_params(options: Mapping[str, Any]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if options.get("temperature") is not None:
        params["temperature"] = options["temperature"]
    if options.get("max_output_tokens") is not None:
        params["max_tokens"] = options["max_output_tokens"]
    if options.get("top_p") is not None:
        params["top_p"] = options["top_p"]
    if options.get("stop"):
        params["stop"] = options["stop"]
    for key in ("frequency_penalty", "presence_penalty", "seed"):
        if options.get(key) is not None:
            params[key] = options[key]
    return params


def _usage_from(payload: Optional[Mapping[str, Any]]) -> TokenUsage:
    payload = payload or {}
    prompt = payload.get("prompt_tokens") or 0
    completion = payload.get("completion_tokens") or 0
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=payload.get("total_tokens") or prompt + completion,
    )


class OpenAICompatibleProvider(HTTPProvider):
    """OpenAI wire format over httpx with a configurable URL layout."""

    def __init__(
        self,
        config: CustomProviderConfig,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        if not config.base_url:
            raise ConfigurationError(
                "base_url is required for custom provider configuration", provider=config.name
            )
        if UrlPattern(config.url_pattern) is UrlPattern.CUSTOM and config.url_builder is None:
            raise ConfigurationError(
                "url_builder is required when url_pattern is 'custom'", provider=config.name
            )

        self.provider_id = config.name
        self.config = config
        self.supports_embeddings = config.supports_embeddings
        super().__init__(
            config.api_key,
            base_url=config.base_url.rstrip("/"),
            timeout=timeout,
            headers=config.headers,
            transport=transport,
            **kwargs,
        )

    def default_model(self, kind: str = "chat") -> Optional[str]:
        return self.config.default_models.get(kind)

    def resolve_model_id(self, model_id: str) -> str:
        return self.config.model_aliases.get(model_id, model_id)

    def url(self, model_id: str, path: str) -> str:
        return build_url(self.config, self.base_url, model_id, path)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            **self.extra_headers,
        }

    async def generate(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> GenerationResult:
        model_id = self.resolve_model_id(model_id)
        self._log_request(model_id, "generate", message_count=len(messages))
        payload = {
            "model": model_id,
            "messages": _to_openai_messages(messages),
            **_chat_params(options),
        }
        data = await self._post_json(self.url(model_id, "/chat/completions"), payload, max_retries)

        choices = data.get("choices") or []
        if not choices:
            raise ProviderResponseError(
                f"Provider {self.provider_id} returned no choices", provider=self.provider_id
            )
        message = choices[0].get("message") or {}
        usage = _usage_from(data.get("usage"))
        self._log_response(model_id, "generate", usage.model_dump())

        return GenerationResult(
            text=message.get("content") or "",
            usage=usage,
            provider=self.provider_id,
            model=data.get("model") or model_id,
            finish_reason=choices[0].get("finish_reason"),
        )

    async def stream(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> TextStream:
        model_id = self.resolve_model_id(model_id)
        self._log_request(model_id, "stream", message_count=len(messages))
        payload = {
            "model": model_id,
            "messages": _to_openai_messages(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
            **_chat_params(options),
        }
        response = await self._open_stream(
            self.url(model_id, "/chat/completions"), payload, max_retries
        )
        return TextStream(
            self._stream_chunks(response),
            provider=self.provider_id,
            model=model_id,
            close=response.aclose,
        )

    async def _stream_chunks(self, response: httpx.Response) -> AsyncIterator[StreamChunk]:
        usage = None
        async for event in self._iter_sse_json(response):
            if event.get("usage"):
                usage = _usage_from(event["usage"])
            for choice in event.get("choices") or []:
                content = (choice.get("delta") or {}).get("content")
                if content:
                    yield StreamChunk(content=content)
        yield StreamChunk(is_final=True, usage=usage or TokenUsage())

    async def embed(
        self,
        model_id: str,
        values: Sequence[str],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> EmbeddingBatchResult:
        if not self.supports_embeddings:
            return await super().embed(model_id, values, max_retries=max_retries, options=options)

        model_id = self.resolve_model_id(model_id)
        self._log_request(model_id, "embed", value_count=len(values))
        payload: Dict[str, Any] = {"model": model_id, "input": list(values)}
        if options.get("dimensions"):
            payload["dimensions"] = options["dimensions"]
        data = await self._post_json(self.url(model_id, "/embeddings"), payload, max_retries)

        items = sorted(data.get("data") or [], key=lambda item: item.get("index", 0))
        if len(items) != len(values):
            raise ProviderResponseError(
                f"Provider {self.provider_id} returned {len(items)} embeddings for {len(values)} values",
                provider=self.provider_id,
            )
        usage = data.get("usage") or {}
        return EmbeddingBatchResult(
            embeddings=[item["embedding"] for item in items],
            usage=EmbeddingUsage(tokens=usage.get("prompt_tokens") or 0),
            provider=self.provider_id,
            model=data.get("model") or model_id,
        )


def create_e2e_provider(
    api_key: Optional[str],
    base_url: str,
    headers: Optional[Mapping[str, str]] = None,
    **kwargs,
) -> OpenAICompatibleProvider:
    """E2E Networks: OpenAI-compatible with the model id in the URL path, no embeddings."""
    config = CustomProviderConfig(
        name="e2e",
        base_url=base_url,
        api_key=api_key,
        headers={"User-Agent": E2E_USER_AGENT, **(headers or {})},
        url_pattern=UrlPattern.MODEL_IN_PATH,
        supports_embeddings=False,
        default_models={"chat": E2E_MODELS["chat"]["qwen-2.5-72b"]},
        model_aliases=dict(E2E_MODELS["chat"]),
    )
    return OpenAICompatibleProvider(config, **kwargs)
