"""Custom ASGI middleware for bearer authentication and request logging."""
from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .errors import Unauthenticated, error_response
from .metrics import record_request
from .security import extract_bearer_token, validate_token


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Ensure requests hitting API routes carry a valid bearer token."""

    def __init__(
        self,
        app: Callable,
        api_prefix: str = "/api",
        public_paths: Iterable[str] = (),
    ) -> None:
        super().__init__(app)
        self.api_prefix = api_prefix
        self.public_paths = frozenset(path.rstrip("/") for path in public_paths)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        path = request.url.path

        if path.startswith(self.api_prefix) and path.rstrip("/") not in self.public_paths:
            if request.method == "OPTIONS":
                return await call_next(request)
            token = extract_bearer_token(request.headers.get("Authorization"))
            try:
                identity = validate_token(token)
            except Unauthenticated as exc:
                return error_response(exc)

            request.state.user_id = identity.user_id

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log structured request summaries and emit metrics."""

    def __init__(self, app: Callable) -> None:
        super().__init__(app)
        self.logger = logging.getLogger("taskhub.request")

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        method = request.method
        route = request.scope.get("route")
        route_path = getattr(route, "path", request.url.path)
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception:
            duration = time.perf_counter() - start
            record_request(method, route_path, status_code, duration)
            self.logger.exception(
                "HTTP %s %s raised an unhandled exception", method, route_path
            )
            raise
        duration = time.perf_counter() - start

        user_id = getattr(request.state, "user_id", None)

        self.logger.info(
            "HTTP %s %s status=%s user=%s duration=%.3f",
            method,
            route_path,
            status_code,
            user_id or "anonymous",
            duration,
        )
        record_request(method, route_path, status_code, duration)
        response.headers.setdefault("X-Process-Time", f"{duration:.6f}")
        return response
