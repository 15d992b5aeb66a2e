"""Correlation ID middleware."""

import logging
import re
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "x-correlation-id"
_VALID_ID = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tag every request and response with a correlation ID and log the outcome."""

    async def dispatch(self, request: Request, call_next):
        supplied = request.headers.get(CORRELATION_HEADER)
        # client-supplied ids end up in logs, keep them to a safe alphabet
        correlation_id = supplied if supplied and _VALID_ID.match(supplied) else str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id

        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "correlation_id": correlation_id,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response
