"""Shared plumbing for providers spoken to directly over httpx."""

import json
from typing import Any, AsyncIterator, Dict, Mapping, Optional

import httpx

from diagnosis_gateway.exceptions import ProviderResponseError
from diagnosis_gateway.providers.base import BaseProvider
from diagnosis_gateway.telemetry import get_logger

logger = get_logger(__name__)


class HTTPProvider(BaseProvider):
    """Provider backed by a shared ``httpx.AsyncClient``.

    Retries are spent through :class:`RetryHandler`; only stream
    establishment is retried for streaming calls.
    """

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(api_key, base_url=base_url, timeout=timeout, **kwargs)
        self.extra_headers = dict(headers or {})
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", **self.extra_headers}

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderResponseError(
                f"Provider {self.provider_id} returned a non-JSON response",
                provider=self.provider_id,
            ) from exc

    async def _post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        max_retries: int,
        params: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        async def _call() -> Dict[str, Any]:
            response = await self.client.post(
                url, json=payload, headers=self._headers(), params=params
            )
            response.raise_for_status()
            return self._decode(response)

        return await self.retry_handler(max_retries).execute(_call)

    async def _open_stream(
        self,
        url: str,
        payload: Mapping[str, Any],
        max_retries: int,
        params: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send a streaming request and return the response once it is accepted."""

        async def _call() -> httpx.Response:
            request = self.client.build_request(
                "POST", url, json=payload, headers=self._headers(), params=params
            )
            response = await self.client.send(request, stream=True)
            if response.is_error:
                await response.aread()
                await response.aclose()
                response.raise_for_status()
            return response

        return await self.retry_handler(max_retries).execute(_call)

    async def _iter_sse_json(self, response: httpx.Response) -> AsyncIterator[Dict[str, Any]]:
        """Yield the JSON payload of each server-sent ``data:`` event."""
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data:
                    continue
                if data == "[DONE]":
                    break
                try:
                    yield json.loads(data)
                except ValueError as exc:
                    raise ProviderResponseError(
                        f"Provider {self.provider_id} sent a malformed stream event",
                        provider=self.provider_id,
                    ) from exc
        finally:
            await response.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()
