"""Custom exceptions for the diagnosis gateway."""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for the diagnosis gateway."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "INTERNAL_ERROR"
        self.status_code = status_code
        self.details = details or {}


class ConfigurationError(GatewayError):
    """Deployment or caller mistake.

    Raised for unknown providers, missing credentials, providers without
    embedding support and malformed embedding input. Never classified,
    retried or sent to a fallback provider.
    """

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="CONFIGURATION_ERROR", status_code=400, **kwargs)
        self.provider = provider
        if provider:
            self.details["provider"] = provider


class ProviderResponseError(GatewayError):
    """A provider answered, but with a payload we cannot use."""

    def __init__(self, message: str, provider: Optional[str] = None, **kwargs):
        super().__init__(message, error_code="PROVIDER_RESPONSE_ERROR", status_code=502, **kwargs)
        self.provider = provider


class GatewayProviderError(GatewayError):
    """Unrecoverable provider failure surfaced to the caller.

    ``cause`` is the original (primary) provider exception and
    ``upstream_status`` its HTTP status when one was available.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        upstream_status: Optional[int] = None,
        cause: Optional[BaseException] = None,
        **kwargs,
    ):
        super().__init__(message, error_code="PROVIDER_ERROR", status_code=503, **kwargs)
        self.provider = provider
        self.upstream_status = upstream_status
        self.cause = cause
        self.details["provider"] = provider
        if upstream_status is not None:
            self.details["upstream_status"] = upstream_status


def http_status_for(error: BaseException) -> int:
    """Map a gateway failure to the status code the routing layer should return."""
    if isinstance(error, ConfigurationError):
        return 400
    if isinstance(error, GatewayProviderError):
        if error.upstream_status in (401, 403):
            return 401
        if error.upstream_status == 429:
            return 429
        return 503
    if isinstance(error, GatewayError):
        return error.status_code
    return 500


__all__ = [
    "GatewayError",
    "ConfigurationError",
    "ProviderResponseError",
    "GatewayProviderError",
    "http_status_for",
]
