"""
Google Generative Language (Gemini) provider over the REST API.
"""

from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx

from diagnosis_gateway.exceptions import ProviderResponseError
from diagnosis_gateway.providers.base import TextStream
from diagnosis_gateway.providers.http_base import HTTPProvider
from diagnosis_gateway.schemas import (
    ChatMessage,
    EmbeddingBatchResult,
    GenerationResult,
    StreamChunk,
    TokenUsage,
)

DEFAULT_GOOGLE_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _model_path(model_id: str) -> str:
    return model_id if model_id.startswith("models/") else f"models/{model_id}"


def _to_gemini_contents(
    messages: Sequence[ChatMessage],
) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """Split system messages out and map roles to Gemini's user/model."""
    system_parts = []
    contents: List[Dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append({"text": msg.content})
            continue
        role = "model" if msg.role == "assistant" else "user"
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": msg.content})
        else:
            contents.append({"role": role, "parts": [{"text": msg.content}]})

    system_instruction = {"parts": system_parts} if system_parts else None
    return system_instruction, contents


def _generation_config(options: Mapping[str, Any]) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    if options.get("temperature") is not None:
        config["temperature"] = options["temperature"]
    if options.get("max_output_tokens") is not None:
        config["maxOutputTokens"] = options["max_output_tokens"]
    if options.get("top_p") is not None:
        config["topP"] = options["top_p"]
    if options.get("top_k") is not None:
        config["topK"] = options["top_k"]
    if options.get("stop"):
        config["stopSequences"] = options["stop"]
    return config


def _usage_from(metadata: Optional[Mapping[str, Any]]) -> TokenUsage:
    metadata = metadata or {}
    prompt = metadata.get("promptTokenCount") or 0
    completion = metadata.get("candidatesTokenCount") or 0
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=metadata.get("totalTokenCount") or prompt + completion,
    )


def _candidate_text(payload: Mapping[str, Any]) -> Tuple[str, Optional[str]]:
    candidates = payload.get("candidates") or []
    if not candidates:
        return "", None
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    return text, candidate.get("finishReason")


class GoogleProvider(HTTPProvider):
    """Gemini chat, streaming and embeddings."""

    provider_id = "google"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(
            api_key,
            base_url=(base_url or DEFAULT_GOOGLE_BASE_URL).rstrip("/"),
            timeout=timeout,
            transport=transport,
            **kwargs,
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-goog-api-key": self.api_key,
            **self.extra_headers,
        }

    def _payload(self, messages: Sequence[ChatMessage], options: Mapping[str, Any]) -> Dict[str, Any]:
        system_instruction, contents = _to_gemini_contents(messages)
        payload: Dict[str, Any] = {"contents": contents}
        if system_instruction:
            payload["systemInstruction"] = system_instruction
        generation_config = _generation_config(options)
        if generation_config:
            payload["generationConfig"] = generation_config
        return payload

    async def generate(
        self,
        model_id: str,
        messages: Sequence[ChatMessage],
        *,
        max_retries: int,
        options: Mapping[str, Any],
    ) -> GenerationResult:
        self._log_request(model_id, "generate", message_count=len(messages))
        url = f"{self.base_url}/{_model_path(model_id)}:generateContent"
        data = await self._post_json(url, self._payload(messages, options), max_retries)

        if not data.get("candidates"):
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            raise ProviderResponseError(
                f"Gemini returned no candidates (block reason: {block_reason})",
                provider=self.provider_id,
            )

        text, finish_reason = _candidate_text(data)
        usage = _usage_from(data.get("usageMetadata"))
        self._log_response(model_id, "generate", usage.model_dump())

        return GenerationResult(
            text=text,
            usage=usage,
            provider=self.provider_id,
            model=data.get("modelVersion") or model_id,
            finish_reason=finish_reason,
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
        url = f"{self.base_url}/{_model_path(model_id)}:streamGenerateContent"
        response = await self._open_stream(
            url, self._payload(messages, options), max_retries, params={"alt": "sse"}
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
            if event.get("usageMetadata"):
                usage = _usage_from(event["usageMetadata"])
            text, _ = _candidate_text(event)
            if text:
                yield StreamChunk(content=text)
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
        model_path = _model_path(model_id)
        requests = []
        for value in values:
            request: Dict[str, Any] = {"model": model_path, "content": {"parts": [{"text": value}]}}
            if options.get("task_type"):
                request["taskType"] = options["task_type"]
            if options.get("dimensions"):
                request["outputDimensionality"] = options["dimensions"]
            requests.append(request)

        url = f"{self.base_url}/{model_path}:batchEmbedContents"
        data = await self._post_json(url, {"requests": requests}, max_retries)

        embeddings = [item.get("values") or [] for item in data.get("embeddings") or []]
        if len(embeddings) != len(values):
            raise ProviderResponseError(
                f"Gemini returned {len(embeddings)} embeddings for {len(values)} values",
                provider=self.provider_id,
            )
        return EmbeddingBatchResult(
            embeddings=embeddings,
            provider=self.provider_id,
            model=model_id,
        )
