from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import date
import logging
from typing import AsyncIterator, Callable
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from portalsync.apps.api.errors import (
    http_exception_handler,
    portal_error_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from portalsync.apps.api.response import API_VERSION
from portalsync.apps.api.routes.deadlines import router as deadlines_router
from portalsync.apps.api.routes.health import router as health_router
from portalsync.apps.api.routes.notifications import router as notifications_router
from portalsync.apps.api.routes.scope import router as scope_router
from portalsync.apps.api.routes.subscriptions import router as subscriptions_router
from portalsync.apps.api.routes.toasts import router as toasts_router
from portalsync.core.config import get_settings
from portalsync.core.errors import PortalSyncError
from portalsync.core.logging import configure_logging
from portalsync.services.portal import PortalBackend, SessionRegistry, sql_backend
from portalsync.services.sync_gateway import ExternalSyncGateway


logger = logging.getLogger(__name__)


def _default_backend() -> PortalBackend:
    # Importing the db module builds the engine, so only do it when no backend is injected.
    from portalsync.persistence.db import SessionLocal

    return sql_backend(SessionLocal)


def create_app(
    *,
    backend: PortalBackend | None = None,
    gateway: ExternalSyncGateway | None = None,
    today: Callable[[], date] | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()
    registry = SessionRegistry(
        backend=backend or _default_backend(),
        gateway=gateway or ExternalSyncGateway(),
        today=today,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        registry.close_all()
        # Let detached dispatches finish so shutdown does not cancel them mid-request.
        await registry.gateway.drain()
        logger.info("api_shutdown_complete")

    app = FastAPI(title="Portal Sync API", lifespan=lifespan)
    app.state.sessions = registry
    app.state.settings = settings

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(PortalSyncError)
    async def _portal_error_handler(request: Request, exc: PortalSyncError):
        return await portal_error_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(scope_router, prefix=f"/{API_VERSION}")
    app.include_router(subscriptions_router, prefix=f"/{API_VERSION}")
    app.include_router(notifications_router, prefix=f"/{API_VERSION}")
    app.include_router(toasts_router, prefix=f"/{API_VERSION}")
    app.include_router(deadlines_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
