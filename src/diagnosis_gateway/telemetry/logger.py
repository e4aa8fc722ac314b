"""Structured logging configuration with correlation IDs and credential redaction."""

import logging
import re
import sys
from contextvars import ContextVar
from typing import Any, Optional
from uuid import uuid4

import orjson
import structlog
from structlog.processors import CallsiteParameter

from diagnosis_gateway.config import Settings, get_settings

# Context variable for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class SecretRedactor:
    """Redact provider credentials from log values."""

    API_KEY_PATTERN = re.compile(r"\b(sk-|pk-|api[_-]?key[\s=:]+)[\w-]{20,}\b", re.IGNORECASE)
    GOOGLE_KEY_PATTERN = re.compile(r"\bAIza[\w-]{30,}\b")
    BEARER_PATTERN = re.compile(r"\bBearer\s+[\w.\-]{16,}", re.IGNORECASE)
    KEY_QUERY_PATTERN = re.compile(r"([?&]key=)[^&\s]+")

    @classmethod
    def redact(cls, value: Any) -> Any:
        """Redact credentials from value."""
        if not isinstance(value, str):
            return value

        value = cls.API_KEY_PATTERN.sub("[API_KEY_REDACTED]", value)
        value = cls.GOOGLE_KEY_PATTERN.sub("[API_KEY_REDACTED]", value)
        value = cls.BEARER_PATTERN.sub("Bearer [REDACTED]", value)
        value = cls.KEY_QUERY_PATTERN.sub(r"\1[REDACTED]", value)
        return value


def add_context_vars(logger, method_name, event_dict):
    """Add the current request id to log events."""
    if request_id := request_id_var.get():
        event_dict["request_id"] = request_id
    return event_dict


def redact_sensitive_data(logger, method_name, event_dict):
    """Redact credentials from logs."""
    for key, value in event_dict.items():
        if key in ("timestamp", "level", "logger", "request_id"):
            continue
        if isinstance(value, str):
            event_dict[key] = SecretRedactor.redact(value)
        elif isinstance(value, dict):
            event_dict[key] = {k: SecretRedactor.redact(v) for k, v in value.items()}

    return event_dict


def _orjson_dumps(obj: Any, **kwargs) -> str:
    return orjson.dumps(obj, **kwargs).decode()


def setup_logging(
    level: Optional[str] = None,
    format: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> None:
    """Configure structured logging."""
    settings = settings or get_settings()
    log_level = level or settings.log_level
    log_format = format or settings.log_format

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_context_vars,
    ]

    if settings.is_production:
        processors.append(redact_sensitive_data)

    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.CallsiteParameterAdder(
                parameters=[
                    CallsiteParameter.FILENAME,
                    CallsiteParameter.FUNC_NAME,
                    CallsiteParameter.LINENO,
                ]
            ),
            structlog.processors.format_exc_info,
        ]
    )

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(serializer=_orjson_dumps))
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class RequestContext:
    """Context manager binding a request id to every log line inside it."""

    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id or str(uuid4())
        self._token = None

    def __enter__(self):
        self._token = request_id_var.set(self.request_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        request_id_var.reset(self._token)
        return False
