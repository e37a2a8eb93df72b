"""
Correlation IDs for broker requests.

A caller-supplied X-Correlation-ID is kept as-is so a published
envelope can carry the id its producer already logs under; otherwise
one is generated. Either way it is bound into the structlog context for
every line logged while the request is handled, and echoed back.
"""
import time
import uuid
from typing import Callable, Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger("broker-requests")

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Bind a correlation id per request and log one completion line"""

    async def dispatch(self, request: Request, call_next: Callable):
        supplied = request.headers.get(CORRELATION_HEADER)
        correlation_id = supplied or str(uuid.uuid4())

        request.state.correlation_id = correlation_id
        request.state.correlation_supplied = bool(supplied)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            path=request.url.path,
            method=request.method
        )

        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2)
        )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def get_correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def get_supplied_correlation_id(request: Request) -> Optional[str]:
    """The caller's own correlation id, None when the broker generated it"""
    if getattr(request.state, "correlation_supplied", False):
        return request.state.correlation_id
    return request.headers.get(CORRELATION_HEADER)
