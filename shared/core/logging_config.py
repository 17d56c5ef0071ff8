"""
Structured logging configuration

Every line is one JSON document with the service identity, the trace
context of the request or background job that produced it, and whatever
``extra_fields`` the caller attached. Loggers can be bound to fixed fields
(``get_logger(__name__, component="payments")``) that appear on every line.
"""

import logging
import logging.handlers
import re
import sys
import json
import time
import traceback
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
job_var: ContextVar[Optional[Dict[str, str]]] = ContextVar('job', default=None)

_service_info: Dict[str, str] = {
    "service": "unknown-service",
    "environment": "development",
    "version": "1.0.0",
}

NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler", "httpx", "aiosqlite")


class StructuredFormatter(logging.Formatter):
    """Format log records as single-line JSON documents"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_service_info,
        }

        trace = {
            "request_id": request_id_var.get(),
            "user_id": user_id_var.get(),
        }
        trace = {key: value for key, value in trace.items() if value}
        if trace:
            log_obj["trace"] = trace

        job = job_var.get()
        if job:
            log_obj["job"] = job

        log_obj["location"] = {
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        custom = dict(getattr(record, 'bound_fields', None) or {})
        custom.update(getattr(record, 'extra_fields', None) or {})
        if custom:
            log_obj["custom"] = custom

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": round(record.duration_ms, 2)}

        return json.dumps(log_obj, default=str, ensure_ascii=False)


class SecurityFilter(logging.Filter):
    """Redact credentials and identity numbers that end up in log messages"""

    SENSITIVE_PATTERN = re.compile(
        r"(?i)\b(password|token|api_key|secret|authorization|id_number|idNumber)(\s*[=:]\s*)([^\s,;]+)"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.SENSITIVE_PATTERN.sub(r"\1\2***REDACTED***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging(
    service_name: str,
    level: str = "INFO",
    version: str = "1.0.0",
    environment: str = "development",
    enable_console: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger for the service.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        service_name: Name reported in every log line
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        version: Service version reported in every log line
        environment: Deployment environment reported in every log line
        enable_console: Write to stdout
        log_file: Optional path of a rotating log file
    """
    _service_info.update(service=service_name, environment=environment, version=version)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    formatter = StructuredFormatter()
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.debug(
        "Logging initialized",
        extra={'extra_fields': {'level': level, 'file': log_file}},
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps every record with the fields the logger was bound to"""

    def process(self, msg, kwargs):
        if self.extra:
            extra = dict(kwargs.get('extra') or {})
            extra['bound_fields'] = self.extra
            kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **bound_fields: Any) -> LoggerAdapter:
    """Get a structured logger (usually called with __name__)"""
    return LoggerAdapter(logging.getLogger(name), bound_fields)


def set_request_context(request_id: Optional[str] = None, user_id: Optional[str] = None) -> None:
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)


def generate_request_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def job_context(name: str) -> Iterator[str]:
    """Tag log lines emitted by a background job run; yields the run id"""
    run_id = uuid.uuid4().hex[:12]
    token = job_var.set({"name": name, "run_id": run_id})
    try:
        yield run_id
    finally:
        job_var.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with its duration and echo X-Request-ID back to the caller"""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        request_token = request_id_var.set(request_id)
        user_token = user_id_var.set(None)

        logger = get_logger(__name__)
        start_time = time.perf_counter()
        fields = {'method': request.method, 'path': request.url.path}

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': fields, 'duration_ms': (time.perf_counter() - start_time) * 1000},
            )
            raise
        else:
            fields['status_code'] = response.status_code
            fields['client_host'] = request.client.host if request.client else None
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                f"{request.method} {request.url.path} -> {response.status_code}",
                extra={'extra_fields': fields, 'duration_ms': (time.perf_counter() - start_time) * 1000},
            )
            response.headers['X-Request-ID'] = request_id
            return response
        finally:
            user_id_var.reset(user_token)
            request_id_var.reset(request_token)
