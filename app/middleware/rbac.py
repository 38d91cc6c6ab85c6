"""Bearer token authentication middleware for FastAPI."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.dependencies.auth import User, resolve_user_from_token

logger = logging.getLogger(__name__)

PUBLIC_PATHS: frozenset[str] = frozenset({"/ping", "/docs", "/openapi.json"})


class RBACMiddleware(BaseHTTPMiddleware):
    """Resolve the caller from the Authorization header and store it on the request."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
        if scheme and scheme.lower() != "bearer":
            return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

        try:
            user: User = resolve_user_from_token(credentials.strip() or None)
        except HTTPException as exc:
            logger.info("Rejected request to %s: %s", request.url.path, exc.detail)
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.user = user
        return await call_next(request)
