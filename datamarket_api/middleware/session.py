"""Session middleware to resolve the consumer session from its token."""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from datamarket_api.errors import MarketError
from datamarket_api.security.session import get_session_store

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/health", "/ready", "/metrics", "/docs", "/openapi.json", "/redoc", "/", "/v1/measurements"}
PUBLIC_PREFIXES = ("/metrics", "/v1/storage/")


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach the open session for ``x-session-token`` to the request."""

    async def dispatch(self, request: Request, call_next):
        """Process request with session resolution."""
        path = request.url.path
        if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
            return await call_next(request)
        # login is the only way to get a token
        if path == "/v1/sessions" and request.method == "POST":
            return await call_next(request)

        try:
            session = get_session_store().get(request.headers.get("x-session-token"))
        except MarketError as e:
            return JSONResponse(status_code=e.status_code, content=e.to_dict())

        request.state.session = session
        logger.debug(
            "Session resolved",
            extra={
                "address": session.address,
                "correlation_id": getattr(request.state, "correlation_id", None),
                "path": path,
            },
        )
        return await call_next(request)
