"""
Structured JSON logging for the settlement service.

Every record is emitted as one JSON object carrying the service identity,
the request trace context (request id, correlation id, acting user and the
order being worked on) and any ``extra_fields`` passed by the caller.
"""

import logging
import logging.handlers
import os
import sys
import json
import re
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
import uuid
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
order_id_var: ContextVar[Optional[str]] = ContextVar('order_id', default=None)

_TRACE_VARS = {
    "request_id": request_id_var,
    "correlation_id": correlation_id_var,
    "user_id": user_id_var,
    "order_id": order_id_var,
}

class StructuredFormatter(logging.Formatter):
    """One JSON document per record, ELK/CloudWatch friendly"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": os.getenv('SERVICE_NAME', 'settlement-service'),
            "environment": os.getenv('ENVIRONMENT', 'development'),
            "version": os.getenv('SERVICE_VERSION', '1.0.0'),
        }

        trace_context = current_trace_context()
        if trace_context:
            log_obj["trace"] = trace_context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
            "module": record.module
        }

        if record.exc_info:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {
                "duration_ms": record.duration_ms
            }

        return json.dumps(log_obj, default=str)

def current_trace_context() -> Optional[Dict[str, Any]]:
    """Trace identifiers set for the current request, if any"""
    context = {name: var.get() for name, var in _TRACE_VARS.items() if var.get()}
    return context or None

class SecurityFilter(logging.Filter):
    """Redact secrets and pickup codes before a record leaves the process"""

    SENSITIVE_KEYS = (
        'password', 'token', 'api_key', 'secret', 'signature',
        'authorization', 'cookie', 'pickup_code', 'code'
    )
    # Pickup codes are 64 hex characters
    _HEX_TOKEN = re.compile(r"\b[0-9a-f]{64}\b")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._HEX_TOKEN.sub("***REDACTED***", record.msg)
        fields = getattr(record, 'extra_fields', None)
        if isinstance(fields, dict):
            record.extra_fields = {
                key: ("***REDACTED***" if key.lower() in self.SENSITIVE_KEYS else value)
                for key, value in fields.items()
            }
        return True

def setup_logging(
    service_name: str,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = False,
    log_file: str = None
) -> None:
    """
    Configure the root logger for the service

    Args:
        service_name: Name reported in every record
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Log to stdout
        enable_file: Also log to a rotating file
        log_file: Path of the rotating file
    """
    os.environ['SERVICE_NAME'] = service_name

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    formatter = StructuredFormatter()

    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if enable_file and log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(SecurityFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={
            'extra_fields': {
                'service': service_name,
                'level': level,
                'handlers': {
                    'console': enable_console,
                    'file': enable_file
                }
            }
        }
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Copies the trace context into the ``extra`` of every call"""

    def process(self, msg, kwargs):
        extra = kwargs.get('extra', {})
        for name, var in _TRACE_VARS.items():
            value = var.get()
            if value:
                extra[name] = value
        kwargs['extra'] = extra
        return msg, kwargs

def get_logger(name: str) -> LoggerAdapter:
    """Logger for ``name`` (usually __name__) with trace context injection"""
    return LoggerAdapter(logging.getLogger(name), {})

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    user_id: Optional[str] = None,
    order_id: Optional[str] = None
) -> None:
    """Set trace identifiers for the current request"""
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if user_id:
        user_id_var.set(str(user_id))
    if order_id:
        order_id_var.set(str(order_id))

def clear_request_context() -> None:
    for var in _TRACE_VARS.values():
        var.set(None)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request start and finish with its duration and
    echoes the request id back in the X-Request-ID header
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID', generate_request_id())
        clear_request_context()
        set_request_context(
            request_id=request_id,
            correlation_id=request.headers.get('X-Correlation-ID')
        )

        logger = get_logger(__name__)
        logger.info(
            f"Request started: {request.method} {request.url.path}",
            extra={
                'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'client_host': request.client.host if request.client else None
                }
            }
        )

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    'extra_fields': {
                        'method': request.method,
                        'path': request.url.path,
                        'duration_ms': (time.time() - start_time) * 1000
                    }
                }
            )
            raise

        logger.info(
            f"Request completed: {request.method} {request.url.path}",
            extra={
                'extra_fields': {
                    'method': request.method,
                    'path': request.url.path,
                    'status_code': response.status_code,
                    'duration_ms': (time.time() - start_time) * 1000
                }
            }
        )
        response.headers['X-Request-ID'] = request_id
        return response
