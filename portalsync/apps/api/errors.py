from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portalsync.apps.api.response import error_response, is_api_request
from portalsync.core.errors import (
    ExternalReferenceConflict,
    InvalidTransition,
    LocalWriteFailure,
    NotFoundError,
    PortalSyncError,
    StatusConflict,
    StoreError,
    TenantScopeError,
    TransitionInProgress,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific first; lookups walk this in order.
_DOMAIN_ERRORS: tuple[tuple[type[PortalSyncError], int, str], ...] = (
    (InvalidTransition, 409, "INVALID_TRANSITION"),
    (ExternalReferenceConflict, 409, "EXTERNAL_REFERENCE_CONFLICT"),
    (TransitionInProgress, 409, "TRANSITION_IN_PROGRESS"),
    (StatusConflict, 409, "STATUS_CONFLICT"),
    (TenantScopeError, 403, "TENANT_SCOPE_VIOLATION"),
    (NotFoundError, 404, "NOT_FOUND"),
    (LocalWriteFailure, 503, "LOCAL_WRITE_FAILED"),
    (StoreError, 503, "STORE_UNAVAILABLE"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def describe_domain_error(exc: PortalSyncError) -> tuple[int, str, dict[str, Any] | None]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            details: dict[str, Any] | None = None
            if isinstance(exc, InvalidTransition):
                details = {"current": exc.current, "target": exc.target}
            elif isinstance(exc, LocalWriteFailure):
                details = {"dispatched": exc.dispatched}
            return status_code, code, details
    return 500, "INTERNAL_ERROR", None


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if not is_api_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if not is_api_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Constraint context can hold Decimals, so encode before serializing.
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def portal_error_handler(request: Request, exc: PortalSyncError) -> JSONResponse:
    status_code, code, details = describe_domain_error(exc)
    if status_code >= 500:
        logger.warning("portal_request_failed path=%s code=%s", request.url.path, code, exc_info=exc)
    payload = error_response(request=request, code=code, message=str(exc), details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("unhandled_request_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
