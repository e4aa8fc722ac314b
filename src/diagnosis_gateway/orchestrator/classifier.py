"""Error classification for provider fallback decisions.

Maps any provider failure to an :class:`ErrorKind` plus a verdict on
whether the fallback provider should be tried:

- transient: server errors, network and timeout failures; the provider
  call has already spent its retries, fallback next.
- rate_limit / auth / permanent / model_unavailable: will not heal by
  retrying the same provider.
"""

from typing import Any, Optional

from diagnosis_gateway.exceptions import GatewayError
from diagnosis_gateway.schemas import ErrorClassification, ErrorKind

_TRANSIENT_KEYWORDS = ("timeout", "network", "econnreset", "connection")
_AUTH_KEYWORDS = ("api key", "unauthorized", "authentication")
_MODEL_MISSING_KEYWORDS = ("not found", "unavailable")
_RATE_LIMIT_KEYWORDS = ("rate limit", "quota exceeded")

_IMMEDIATE_FALLBACK_KINDS = frozenset(
    {ErrorKind.AUTH, ErrorKind.RATE_LIMIT, ErrorKind.PERMANENT, ErrorKind.MODEL_UNAVAILABLE}
)


def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def extract_status_code(error: Any) -> Optional[int]:
    """Return the HTTP status carried by ``error``, if any.

    Understands ``httpx.HTTPStatusError`` (``response.status_code``), the
    ``openai`` / ``anthropic`` status errors (``status_code``) and
    response objects exposing ``status``. The gateway's own errors carry an
    HTTP status for callers, not one received from upstream, so they have none.
    """
    if isinstance(error, GatewayError):
        return None
    try:
        response = getattr(error, "response", None)
        if response is not None:
            status = _as_status(getattr(response, "status_code", None))
            if status is None:
                status = _as_status(getattr(response, "status", None))
            if status is not None:
                return status
        return _as_status(getattr(error, "status_code", None))
    except Exception:
        return None


def _classify_status(status: int) -> Optional[ErrorClassification]:
    if 500 <= status < 600:
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.TRANSIENT,
            description=f"Server error {status} - transient issue",
        )
    if status == 429:
        return ErrorClassification(
            should_fallback=True, kind=ErrorKind.RATE_LIMIT, description="Rate limit exceeded"
        )
    if status in (401, 403):
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.AUTH,
            description="Authentication/authorization error",
        )
    if status == 400:
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.PERMANENT,
            description="Bad request - likely permanent issue",
        )
    if status == 404:
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.MODEL_UNAVAILABLE,
            description="Model not found or unavailable",
        )
    return None


def _classify_message(message: str) -> Optional[ErrorClassification]:
    message = message.lower()

    if any(keyword in message for keyword in _TRANSIENT_KEYWORDS):
        return ErrorClassification(
            should_fallback=True, kind=ErrorKind.TRANSIENT, description="Network/connection error"
        )

    if any(keyword in message for keyword in _AUTH_KEYWORDS):
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.AUTH,
            description="API key or authentication error",
        )

    if "model" in message and any(keyword in message for keyword in _MODEL_MISSING_KEYWORDS):
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.MODEL_UNAVAILABLE,
            description="Model not available",
        )

    if any(keyword in message for keyword in _RATE_LIMIT_KEYWORDS):
        return ErrorClassification(
            should_fallback=True,
            kind=ErrorKind.RATE_LIMIT,
            description="Rate limit or quota exceeded",
        )

    return None


def classify_error(error: Any) -> ErrorClassification:
    """Classify a provider failure. Never raises."""
    status = extract_status_code(error)
    if status is not None:
        classification = _classify_status(status)
        if classification is not None:
            return classification

    if isinstance(error, BaseException):
        try:
            message = str(error)
        except Exception:
            message = ""
        classification = _classify_message(message)
        if classification is not None:
            return classification

    return ErrorClassification(
        should_fallback=True,
        kind=ErrorKind.TRANSIENT,
        description="Unknown error - treating as transient",
    )


def should_fallback_immediately(error: Any) -> bool:
    """Whether retrying the same provider is pointless for ``error``."""
    return classify_error(error).kind in _IMMEDIATE_FALLBACK_KINDS
