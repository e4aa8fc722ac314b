"""Telemetry module for observability."""

from diagnosis_gateway.telemetry.logger import RequestContext, get_logger, setup_logging

__all__ = ["get_logger", "setup_logging", "RequestContext"]
