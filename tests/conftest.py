"""Pytest configuration and fixtures."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from diagnosis_gateway.config import Settings
from diagnosis_gateway.providers import ProviderRegistry, TextStream
from diagnosis_gateway.providers.base import BaseProvider
from diagnosis_gateway.schemas import (
    DefaultModels,
    EmbeddingBatchResult,
    EmbeddingUsage,
    GenerationResult,
    ModelConfig,
    StreamChunk,
    TokenUsage,
)

Responder = Callable[[httpx.Request], httpx.Response]


class RecordingTransport:
    """Answers provider HTTP calls from canned routes and records every request."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: List[tuple] = []

    def add(self, url_fragment: str, responder: Responder) -> "RecordingTransport":
        self._routes.append((url_fragment, responder))
        return self

    def add_json(self, url_fragment: str, payload: Any, status_code: int = 200):
        return self.add(
            url_fragment, lambda request: httpx.Response(status_code, json=payload)
        )

    def add_sse(self, url_fragment: str, events: List[Any]):
        body = "".join(
            f"data: {event if isinstance(event, str) else json.dumps(event)}\n\n"
            for event in events
        )
        return self.add(
            url_fragment,
            lambda request: httpx.Response(
                200, content=body.encode(), headers={"content-type": "text/event-stream"}
            ),
        )

    def calls_to(self, url_fragment: str) -> List[httpx.Request]:
        return [request for request in self.requests if url_fragment in str(request.url)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for fragment, responder in self._routes:
            if fragment in str(request.url):
                return responder(request)
        return httpx.Response(404, json={"error": {"message": f"no route for {request.url}"}})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeProvider(BaseProvider):
    """In-memory provider with scriptable failures."""

    def __init__(self, provider_id: str, supports_embeddings: bool = True):
        self.provider_id = provider_id
        self.supports_embeddings = supports_embeddings
        super().__init__("test-key")
        self.error: Optional[BaseException] = None
        self.stream_error: Optional[BaseException] = None
        self.text = f"reply from {provider_id}"
        self.calls: List[tuple] = []

    async def generate(self, model_id, messages, *, max_retries, options):
        self.calls.append(("generate", model_id, max_retries))
        if self.error:
            raise self.error
        return GenerationResult(
            text=self.text,
            usage=TokenUsage(prompt_tokens=3, completion_tokens=4, total_tokens=7),
            provider=self.provider_id,
            model=model_id,
            finish_reason="stop",
        )

    async def stream(self, model_id, messages, *, max_retries, options):
        self.calls.append(("stream", model_id, max_retries))
        if self.error:
            raise self.error

        async def chunks():
            yield StreamChunk(content=self.text)
            if self.stream_error:
                raise self.stream_error
            yield StreamChunk(is_final=True, usage=TokenUsage(total_tokens=7))

        return TextStream(chunks(), provider=self.provider_id, model=model_id)

    async def embed(self, model_id, values, *, max_retries, options):
        self.calls.append(("embed", model_id, max_retries))
        if self.error:
            raise self.error
        return EmbeddingBatchResult(
            embeddings=[[float(index), 1.0] for index, _ in enumerate(values)],
            usage=EmbeddingUsage(tokens=len(values)),
            provider=self.provider_id,
            model=model_id,
        )


def status_error(status_code: int, message: str = "upstream failure") -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://provider.test/v1/chat/completions")
    response = httpx.Response(
        status_code, json={"error": {"message": message}}, request=request
    )
    return httpx.HTTPStatusError(message, request=request, response=response)


@pytest.fixture
def make_status_error():
    return status_error


def make_settings(**overrides) -> Settings:
    values: Dict[str, Any] = {
        "ENVIRONMENT": "test",
        "OPENAI_API_KEY": "sk-test-openai",
        "OPENAI_BASE_URL": "https://api.openai.com/v1",
        "ANTHROPIC_API_KEY": "sk-ant-test",
        "GOOGLE_GENERATIVE_AI_API_KEY": "google-test-key",
        "DEEPINFRA_API_KEY": "deepinfra-test-key",
        "E2E_NETWORKS_API_KEY": "e2e-test-key",
        "PRIMARY_MAX_RETRIES": 0,
        "FALLBACK_MAX_RETRIES": 0,
        "RETRY_MIN_WAIT": 0,
        "RETRY_MAX_WAIT": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def settings():
    """Settings with fake credentials for every provider and no retries."""
    return make_settings()


@pytest.fixture
def recorder():
    return RecordingTransport()


@pytest.fixture
def http_registry(settings, recorder):
    """Registry of the built-in providers talking to the recording transport."""
    return ProviderRegistry(settings, transport=recorder.transport)


@pytest.fixture
def fake_providers():
    return {"alpha": FakeProvider("alpha"), "beta": FakeProvider("beta")}


@pytest.fixture
def fake_defaults():
    return DefaultModels(
        llm_primary=ModelConfig("alpha", "alpha-chat"),
        llm_fallback=ModelConfig("beta", "beta-chat"),
        embedding_primary=ModelConfig("alpha", "alpha-embed"),
        embedding_fallback=ModelConfig("beta", "beta-embed"),
    )


@pytest.fixture
def fake_registry(settings, fake_providers, fake_defaults):
    """Registry with only the in-memory ``alpha`` (primary) and ``beta`` (fallback)."""
    registry = ProviderRegistry(settings, default_models=fake_defaults, include_builtin=False)
    for name, provider in fake_providers.items():
        registry.register_provider(
            name,
            lambda settings, transport, provider=provider: provider,
            supports_embeddings=provider.supports_embeddings,
        )
    return registry
