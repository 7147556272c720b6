"""HTTP middleware: request metrics, correlation IDs and access logging."""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.core.logging import clear_correlation_id, log_error, log_info, set_correlation_id
from app.core.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
    HTTP_REQUESTS_TOTAL,
)

CORRELATION_ID_HEADER = "X-Correlation-ID"

_ID_SEGMENT = re.compile(
    r"/(?:[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}|\d+)(?=/|$)",
    re.IGNORECASE,
)

# Not worth a time series of their own
_UNMETERED_PATHS = frozenset(("/metrics", "/health"))

logger = logging.getLogger("app.requests")


def endpoint_label(path: str) -> str:
    """Collapse payment, order and gateway ids in a path to ``{id}``."""
    return _ID_SEGMENT.sub("/{id}", path)


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time requests per method and endpoint template."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in _UNMETERED_PATHS:
            return await call_next(request)

        labels = {"method": request.method, "endpoint": endpoint_label(request.url.path)}
        in_progress = HTTP_REQUESTS_IN_PROGRESS.labels(**labels)
        in_progress.inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            HTTP_REQUEST_DURATION_SECONDS.labels(**labels).observe(time.perf_counter() - started)
            HTTP_REQUESTS_TOTAL.labels(status_code=str(status_code), **labels).inc()
            in_progress.dec()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the caller's correlation ID, or a fresh one, for the request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line when a request arrives and one when it finishes.

    Webhook query strings are never logged: Idram and the RBS banks may put
    notification fields in the URL.
    """

    def __init__(self, app: ASGIApp, log_query: bool = True):
        super().__init__(app)
        self.log_query = log_query

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        query = None
        if self.log_query and "/webhooks/" not in path and request.url.query:
            query = request.url.query

        log_info(
            logger,
            "Request started",
            method=request.method,
            path=path,
            query=query,
            client_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            log_error(
                logger,
                "Request failed",
                e,
                method=request.method,
                path=path,
                duration_ms=_elapsed_ms(started),
            )
            raise

        log_info(
            logger,
            "Request completed",
            method=request.method,
            path=path,
            status_code=response.status_code,
            duration_ms=_elapsed_ms(started),
        )
        return response


__all__ = [
    "CORRELATION_ID_HEADER",
    "CorrelationIdMiddleware",
    "MetricsMiddleware",
    "RequestLoggingMiddleware",
    "endpoint_label",
]
