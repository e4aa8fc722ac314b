from .classifier import classify_error, extract_status_code, should_fallback_immediately
from .fallback import FallbackOrchestrator, ProviderOperation, with_fallback
from .retry_handler import RetryHandler, is_retryable_error

__all__ = [
    "classify_error",
    "extract_status_code",
    "should_fallback_immediately",
    "FallbackOrchestrator",
    "ProviderOperation",
    "with_fallback",
    "RetryHandler",
    "is_retryable_error",
]
