"""
Security middleware for rate limiting, CORS, and other security features.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional
import threading
import time

from fastapi import Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.errors import RateLimitError
from core.logger import logger
from core.responses import error_response
import config


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitStore(ABC):
    """Sliding-window request counter shared by the global and per-route limiters."""

    @abstractmethod
    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        """Record a hit for ``key`` and return True if it stays within ``limit`` per window."""

    @abstractmethod
    def reset(self, key: Optional[str] = None):
        """Forget one key, or everything."""


class InMemoryRateLimitStore(RateLimitStore):
    """Per-process store. Use a shared store when running several instances."""

    def __init__(self, cleanup_interval: float = 300):
        self._hits: Dict[str, List[float]] = defaultdict(list)
        self._windows: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.cleanup_interval = cleanup_interval  # Clean up old entries every 5 minutes
        self.last_cleanup = time.time()

    def allow(self, key: str, limit: int, window_seconds: float) -> bool:
        current_time = time.time()
        with self._lock:
            if current_time - self.last_cleanup > self.cleanup_interval:
                self._cleanup_old_entries(current_time)
                self.last_cleanup = current_time

            self._windows[key] = window_seconds
            hits = [t for t in self._hits[key] if current_time - t < window_seconds]
            if len(hits) >= limit:
                self._hits[key] = hits
                return False
            hits.append(current_time)
            self._hits[key] = hits
            return True

    def reset(self, key: Optional[str] = None):
        with self._lock:
            if key is None:
                self._hits.clear()
                self._windows.clear()
            else:
                self._hits.pop(key, None)
                self._windows.pop(key, None)

    def _cleanup_old_entries(self, current_time: float):
        """Clean up old rate limit entries."""
        for key in list(self._hits.keys()):
            window = self._windows.get(key, 0)
            self._hits[key] = [t for t in self._hits[key] if current_time - t < window]
            if not self._hits[key]:
                del self._hits[key]
                self._windows.pop(key, None)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Global per-IP rate limit on API routes."""

    def __init__(
        self,
        app,
        store: RateLimitStore,
        max_requests: int = 100,
        window_seconds: int = 15 * 60,
        path_prefix: str = "/api/"
    ):
        """
        Initialize rate limiting middleware.

        Args:
            app: FastAPI application
            store: Counter store (shared with the per-route limiters)
            max_requests: Max requests per window per IP
            window_seconds: Window length
            path_prefix: Only paths under this prefix are limited
        """
        super().__init__(app)
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        """Process request with rate limiting."""
        if request.url.path.startswith(self.path_prefix) and request.method != "OPTIONS":
            ip = client_ip(request)
            if not self.store.allow(f"global:{ip}", self.max_requests, self.window_seconds):
                logger.warning(f"Rate limit exceeded for IP: {ip}")
                # Raised exceptions are not routed to the app's handlers from here
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content=error_response("Too many requests from this IP, please try again later."),
                    headers={"Retry-After": str(self.window_seconds)},
                )

        return await call_next(request)


class RateLimiter:
    """Per-route limiter used as a FastAPI dependency."""

    def __init__(self, name: str, max_requests: int, window_seconds: int, message: str):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message

    async def __call__(self, request: Request):
        store: RateLimitStore = request.app.state.rate_limit_store
        ip = client_ip(request)
        if not store.allow(f"{self.name}:{ip}", self.max_requests, self.window_seconds):
            logger.warning(f"{self.name} rate limit exceeded for IP: {ip}")
            raise RateLimitError(self.message)


login_rate_limiter = RateLimiter(
    "login",
    config.LOGIN_RATE_LIMIT,
    15 * 60,
    "Too many login attempts from this IP, please try again after 15 minutes.",
)

password_reset_rate_limiter = RateLimiter(
    "password_reset",
    config.PASSWORD_RESET_RATE_LIMIT,
    60 * 60,
    "Too many password reset requests from this IP, please try again after an hour.",
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to responses."""

    async def dispatch(self, request: Request, call_next):
        """Add security headers."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if config.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


def setup_cors(app, allowed_origins: list[str], allowed_methods: list[str] = None):
    """
    Setup CORS middleware.

    Args:
        app: FastAPI application
        allowed_origins: List of allowed origins
        allowed_methods: List of allowed HTTP methods
    """
    if allowed_methods is None:
        allowed_methods = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=allowed_methods,
        allow_headers=["*"],
    )


def setup_trusted_hosts(app, allowed_hosts: list[str]):
    """
    Setup trusted hosts middleware.

    Args:
        app: FastAPI application
        allowed_hosts: List of allowed hostnames
    """
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=allowed_hosts
    )
