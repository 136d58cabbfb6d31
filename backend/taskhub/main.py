"""FastAPI application entry point for the task-management backend."""
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import Session

from .api import (
    routes_admin,
    routes_auth,
    routes_chat,
    routes_projects,
    routes_realtime,
    routes_tasks,
    routes_teams,
    routes_upload,
)
from .chat import ChatStore
from .core import db
from .core.config import settings
from .core.errors import TaskHubError, request_validation_handler, taskhub_error_handler
from .core.middleware import BearerAuthMiddleware, RequestLoggingMiddleware
from .core.rate_limiter import limiter, rate_limit_handler
from .realtime import Gateway

PUBLIC_API_PATHS = ("/api/register", "/api/login")


def _allowed_origins() -> list[str]:
    origins = list(settings.CORS_ALLOW_ORIGINS)
    if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
        origins.append(settings.FRONTEND_URL)
    return origins


def create_app(session_factory: Optional[Callable[[], Session]] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    ``session_factory`` backs the chat store; it defaults to the module-level
    ``SessionLocal``.
    """

    gateway = Gateway(ChatStore(session_factory or db.SessionLocal))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await gateway.shutdown()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

    app.state.gateway = gateway
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(TaskHubError, taskhub_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(BearerAuthMiddleware, api_prefix="/api", public_paths=PUBLIC_API_PATHS)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(routes_admin.router, prefix="/admin", tags=["admin"])
    app.include_router(routes_auth.router, prefix="/api", tags=["auth"])
    app.include_router(routes_teams.router, prefix="/api/teams", tags=["teams"])
    app.include_router(routes_projects.router, prefix="/api/projects", tags=["projects"])
    app.include_router(routes_tasks.router, prefix="/api/tasks", tags=["tasks"])
    app.include_router(routes_chat.router, prefix="/api/tasks", tags=["chat"])
    app.include_router(routes_upload.router, prefix="/api", tags=["upload"])
    app.include_router(routes_realtime.router, tags=["realtime"])

    return app


app = create_app()
