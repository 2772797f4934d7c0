"""
Authentication pre-check middleware.
Flags API requests that arrive without any credential; actual validation is done by FastAPI dependencies.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import List

from core.logger import logger
import config

# Public routes that don't require authentication
PUBLIC_ROUTES: List[str] = [
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
    "/uploads",
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/refresh-token",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
    "/api/auth/verify-email",
]


class AuthRequiredMiddleware(BaseHTTPMiddleware):
    """
    Early check for authentication credentials.

    Requests are never blocked here so that the dependencies produce the
    precise error; missing credentials are only logged for monitoring.
    """

    def __init__(self, app, public_routes: List[str] = None):
        super().__init__(app)
        self.public_routes = public_routes or PUBLIC_ROUTES

    def is_public(self, path: str) -> bool:
        return path == "/" or any(path.startswith(route) for route in self.public_routes)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if self.is_public(path) or request.method == "OPTIONS":
            return await call_next(request)

        has_header = bool(request.headers.get("authorization"))
        has_cookie = bool(request.cookies.get(config.ACCESS_COOKIE_NAME))
        if not has_header and not has_cookie:
            logger.warning(
                f"Request without credentials: {request.method} {path} "
                f"from {request.client.host if request.client else 'unknown'}"
            )

        return await call_next(request)
