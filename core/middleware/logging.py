"""
Structured request logging with sensitive-data masking.

Every request is logged as one JSON ``request_started`` line and one
``request_completed`` line carrying the request id, the tenant id and the
timing. Contact details of candidates and agencies never reach the logs.
"""

import logging
import time
import json
import re
import uuid
from typing import Callable, Any
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
import traceback

from core.config import settings

logger = logging.getLogger(__name__)


# Field names whose values are never logged
SENSITIVE_FIELD_PATTERNS = [
    re.compile(r'password', re.IGNORECASE),
    re.compile(r'token', re.IGNORECASE),
    re.compile(r'api[_-]?key', re.IGNORECASE),
    re.compile(r'secret', re.IGNORECASE),
    re.compile(r'authorization', re.IGNORECASE),
    re.compile(r'cookie', re.IGNORECASE),
    re.compile(r'email', re.IGNORECASE),
    re.compile(r'phone', re.IGNORECASE),
    re.compile(r'date_of_birth', re.IGNORECASE),
    re.compile(r'linkedin', re.IGNORECASE),
]

# PII that can appear inside free text
PII_PATTERNS = [
    (re.compile(r'(?:https?://)?(?:[a-z]{2,3}\.)?linkedin\.com/in/[^\s/?#]+', re.IGNORECASE), '[LINKEDIN]'),
    (re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b'), '[EMAIL]'),
    (re.compile(r'\+\d{1,3}[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{1,9}'), '[PHONE]'),
    (re.compile(r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b'), '[PHONE]'),
    (re.compile(r'\b\d{4}-\d{2}-\d{2}\b(?=.*birth)', re.IGNORECASE), '[DATE]'),
]


def is_sensitive_field(field_name: str) -> bool:
    return any(pattern.search(field_name) for pattern in SENSITIVE_FIELD_PATTERNS)


def mask_text(value: str) -> str:
    for pattern, replacement in PII_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def mask_sensitive_data(data: Any, depth: int = 0, max_depth: int = 10) -> Any:
    """
    Recursively mask sensitive data in dictionaries and lists.

    Args:
        data: Data structure to mask
        depth: Current recursion depth
        max_depth: Maximum recursion depth

    Returns:
        Data structure with sensitive values masked
    """
    if depth > max_depth:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(data, dict):
        return {
            key: "[REDACTED]"
            if is_sensitive_field(str(key))
            else mask_sensitive_data(value, depth + 1, max_depth)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [mask_sensitive_data(item, depth + 1, max_depth) for item in data]
    if isinstance(data, str):
        return mask_text(data)
    return data


def mask_headers(headers: dict) -> dict:
    masked = {}
    for key, value in headers.items():
        key_lower = key.lower()
        if key_lower == 'authorization' and isinstance(value, str) and ' ' in value:
            masked[key] = f"{value.split(' ', 1)[0]} [REDACTED]"
        elif is_sensitive_field(key_lower):
            masked[key] = "[REDACTED]"
        else:
            masked[key] = value
    return masked


def should_log_request(path: str) -> bool:
    # Health checks are too frequent to be useful in request logs
    skip_paths = ['/health', '/ready']
    return not any(path.startswith(skip) for skip in skip_paths)


def get_client_ip(request: Request) -> str:
    """
    Client IP with the last IPv4 octet masked.

    Args:
        request: FastAPI request object

    Returns:
        Masked client IP address
    """
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        ip = forwarded_for.split(',')[0].strip()
    else:
        ip = request.client.host if request.client else 'unknown'

    parts = ip.split('.')
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.{parts[2]}.xxx"
    return 'unknown'


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request/response logging middleware.

    Features:
    - Structured JSON lines for easy parsing
    - Request id propagation (``x-request-id``) for tracing
    - Tenant id on every line
    - Masking of credentials and contact details
    """

    def __init__(
        self,
        app: ASGIApp,
        log_request_body: bool = False,
        max_body_size: int = 1024,
    ):
        super().__init__(app)
        self.log_request_body = log_request_body
        self.max_body_size = max_body_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get('x-request-id', str(uuid.uuid4()))
        request.state.request_id = request_id
        tenant_id = request.headers.get(settings.tenant_header)

        if not should_log_request(request.url.path):
            response = await call_next(request)
            response.headers['x-request-id'] = request_id
            return response

        start_time = time.time()

        request_log = {
            'event': 'request_started',
            'request_id': request_id,
            'tenant_id': tenant_id,
            'method': request.method,
            'path': request.url.path,
            'query_params': mask_sensitive_data(dict(request.query_params)),
            'client_ip': get_client_ip(request),
            'headers': mask_headers(dict(request.headers)),
        }

        if self.log_request_body and request.method in ['POST', 'PUT', 'PATCH']:
            body = await self._get_request_body(request)
            if body:
                request_log['body'] = mask_sensitive_data(body)

        logger.info(json.dumps(request_log))

        response = None
        error_details = None

        try:
            response = await call_next(request)
        except Exception as exc:
            error_details = {
                'type': type(exc).__name__,
                'message': mask_text(str(exc)),
            }
            logger.error(
                f"Request processing error: {request.method} {request.url.path}",
                exc_info=True,
                extra={'request_id': request_id, 'tenant_id': tenant_id},
            )
            raise
        finally:
            duration = time.time() - start_time

            response_log = {
                'event': 'request_completed',
                'request_id': request_id,
                'tenant_id': tenant_id,
                'method': request.method,
                'path': request.url.path,
                'duration_ms': round(duration * 1000, 2),
                'status_code': response.status_code if response else 500,
            }
            if error_details:
                response_log['error'] = error_details

            if response and response.status_code >= 500:
                logger.error(json.dumps(response_log))
            elif response and response.status_code >= 400:
                logger.warning(json.dumps(response_log))
            else:
                logger.info(json.dumps(response_log))

            if response:
                response.headers['x-request-id'] = request_id

        return response

    async def _get_request_body(self, request: Request) -> Any:
        content_type = request.headers.get('content-type', '')
        if 'application/json' not in content_type:
            return {'_content_type': content_type}

        body_bytes = await request.body()
        if len(body_bytes) > self.max_body_size:
            return {'_truncated': True, '_size': len(body_bytes)}
        try:
            return json.loads(body_bytes.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Could not parse request body: {e}")
            return None


class StructuredFormatter(logging.Formatter):
    """Formats log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for attr in ('request_id', 'tenant_id', 'task_id', 'agency_id', 'job_id', 'budget_id'):
            if hasattr(record, attr):
                log_data[attr] = getattr(record, attr)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_data, default=str)


def setup_logging(log_level: str = "INFO", json_logs: bool = True):
    """
    Configure application-wide logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to format logs as JSON
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, log_level.upper()))

    if json_logs:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('celery.app.trace').setLevel(logging.WARNING)
    logging.getLogger('kombu').setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
