"""Text generation across providers with automatic fallback.

Example::

    registry = ProviderRegistry(get_settings())
    llm = GenerationGateway(registry)

    result = await llm.generate(GenerationRequest.from_prompt("Hello!"))

    # Specific provider
    result = await llm.generate(
        request, model=ModelConfig("anthropic", "claude-3-5-sonnet-latest")
    )

    stream = await llm.stream(request, on_error=report)
    async for chunk in stream:
        ...

    objects = await llm.stream_object(request, Diagnosis)
    async for chunk in objects:
        render(objects.partial)
    diagnosis = objects.object
"""

import json
import re
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_core import from_json

from diagnosis_gateway.exceptions import ConfigurationError, ProviderResponseError
from diagnosis_gateway.providers.base import ErrorCallback, TextStream
from diagnosis_gateway.schemas import (
    ChatMessage,
    GenerationRequest,
    GenerationResult,
    ModelConfig,
    StreamChunk,
    TokenUsage,
)
from diagnosis_gateway.services.base import PASSTHROUGH_ERRORS, Gateway, provider_error_from
from diagnosis_gateway.telemetry import get_logger

logger = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    match = _CODE_FENCE.match(text)
    return match.group(1) if match else text


def _partial_json(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort parse of an incomplete JSON object; ``None`` until one starts."""
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
    text = text.rstrip("`").strip()
    if not text:
        return None
    try:
        value = from_json(text, allow_partial=True)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _structured_request(request: GenerationRequest, schema: Type[BaseModel]) -> GenerationRequest:
    instruction = ChatMessage(
        role="system",
        content=(
            "Respond only with a JSON object, without any surrounding text, that "
            "conforms to this JSON schema:\n"
            + json.dumps(schema.model_json_schema())
        ),
    )
    return request.model_copy(update={"messages": [instruction, *request.messages]})


def _validate_structured(text: str, schema: Type[SchemaT], provider: str, model: str) -> SchemaT:
    try:
        return schema.model_validate_json(_strip_code_fence(text))
    except ValidationError as exc:
        logger.warning(
            "structured_output_invalid",
            provider=provider,
            model=model,
            schema=schema.__name__,
            error_count=exc.error_count(),
        )
        raise ProviderResponseError(
            f"{provider}:{model} returned output that does not match {schema.__name__}",
            provider=provider,
        ) from exc


class ObjectStream(Generic[SchemaT]):
    """A structured reply streamed as text and validated when it ends.

    Iterating yields the raw text chunks and keeps :attr:`partial` up to date
    with whatever part of the object has arrived. Once the provider finishes,
    the full text is validated against ``schema`` into :attr:`object`. A reply
    that does not validate is reported to ``on_error`` and raised as
    :class:`ProviderResponseError`; the stream is already established, so
    there is no fallback at that point.
    """

    def __init__(self, text_stream: TextStream, schema: Type[SchemaT]):
        self._stream = text_stream
        self.schema = schema
        self.partial: Optional[Dict[str, Any]] = None
        self.object: Optional[SchemaT] = None
        self._parts: List[str] = []

    @property
    def provider(self) -> str:
        return self._stream.provider

    @property
    def model(self) -> str:
        return self._stream.model

    @property
    def usage(self) -> Optional[TokenUsage]:
        return self._stream.usage

    async def __aiter__(self) -> AsyncIterator[StreamChunk]:
        async for chunk in self._stream:
            if chunk.content:
                self._parts.append(chunk.content)
                self.partial = _partial_json("".join(self._parts))
            yield chunk

        try:
            self.object = _validate_structured(
                "".join(self._parts), self.schema, self.provider, self.model
            )
        except ProviderResponseError as exc:
            if self._stream.on_error:
                self._stream.on_error(exc)
            raise

    async def result(self) -> SchemaT:
        """Consume the rest of the stream and return the validated object."""
        if self.object is None:
            async for _ in self:
                pass
        return self.object

    async def aclose(self) -> None:
        await self._stream.aclose()

    async def __aenter__(self) -> "ObjectStream[SchemaT]":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class GenerationGateway(Gateway):
    """Generation façade over the registry and the fallback orchestrator."""

    def _models(self, model: Optional[ModelConfig]):
        defaults = self.registry.default_models
        return model or defaults.llm_primary, defaults.llm_fallback

    async def generate(
        self,
        request: GenerationRequest,
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
    ) -> GenerationResult:
        """Generate text with the given (or default) model, falling back on failure."""
        primary, fallback = self._models(model)

        async def run_primary(max_retries: int) -> GenerationResult:
            handle = self.registry.resolve_generation_model(primary)
            return await handle.generate(request, max_retries)

        async def run_fallback(max_retries: int) -> GenerationResult:
            handle = self.registry.resolve_generation_model(fallback)
            return await handle.generate(request, max_retries)

        try:
            return await self.orchestrator.run(
                run_primary, run_fallback, self.build_policy(primary, fallback, enable_fallback)
            )
        except PASSTHROUGH_ERRORS:
            raise
        except Exception as exc:
            raise provider_error_from(exc, primary.provider) from exc

    async def stream(
        self,
        request: GenerationRequest,
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> TextStream:
        """Establish a text stream, falling back if establishment fails.

        ``on_error`` is called for every failed establishment attempt and for
        failures while the stream is consumed.
        """
        primary, fallback = self._models(model)

        def _opener(config: ModelConfig):
            async def open_stream(max_retries: int) -> TextStream:
                handle = self.registry.resolve_generation_model(config)
                try:
                    text_stream = await handle.stream(request, max_retries)
                except ConfigurationError:
                    raise
                except Exception as exc:
                    if on_error:
                        on_error(exc)
                    raise
                text_stream.on_error = on_error
                return text_stream

            return open_stream

        try:
            return await self.orchestrator.run(
                _opener(primary),
                _opener(fallback),
                self.build_policy(primary, fallback, enable_fallback),
            )
        except PASSTHROUGH_ERRORS:
            raise
        except Exception as exc:
            raise provider_error_from(exc, primary.provider) from exc

    async def generate_object(
        self,
        request: GenerationRequest,
        schema: Type[SchemaT],
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
    ) -> SchemaT:
        """Generate a JSON object validated against ``schema``.

        A reply that does not validate counts as a failure of that provider.
        """
        primary, fallback = self._models(model)
        structured_request = _structured_request(request, schema)

        def _runner(config: ModelConfig):
            async def run(max_retries: int) -> SchemaT:
                handle = self.registry.resolve_generation_model(config)
                result = await handle.generate(structured_request, max_retries)
                return _validate_structured(result.text, schema, config.provider, config.model_id)

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

    async def stream_object(
        self,
        request: GenerationRequest,
        schema: Type[SchemaT],
        model: Optional[ModelConfig] = None,
        enable_fallback: Optional[bool] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ObjectStream[SchemaT]:
        """Stream a JSON object validated against ``schema`` once complete.

        Establishment falls back like :meth:`stream`. Validation happens at the
        end of the stream, after the provider is committed to.
        """
        text_stream = await self.stream(
            _structured_request(request, schema),
            model=model,
            enable_fallback=enable_fallback,
            on_error=on_error,
        )
        return ObjectStream(text_stream, schema)
