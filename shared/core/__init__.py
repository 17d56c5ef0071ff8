"""Shared service plumbing: health probes and structured logging."""

from .health import ServiceHealth, HealthStatus, check_result, datastore_check
from .logging_config import (
    setup_logging,
    get_logger,
    job_context,
    RequestLoggingMiddleware,
    set_request_context,
    generate_request_id,
    LoggerAdapter,
)

__all__ = [
    "ServiceHealth",
    "HealthStatus",
    "check_result",
    "datastore_check",
    "setup_logging",
    "get_logger",
    "job_context",
    "RequestLoggingMiddleware",
    "set_request_context",
    "generate_request_id",
    "LoggerAdapter",
]
