from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel, Field


API_VERSION = "v1"

T = TypeVar("T")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = Field(default=API_VERSION)
    # Tenant the data belongs to; differs from the caller's own tenant while impersonating.
    tenant_id: str | None = None
    impersonating: bool = False


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[T]):
    data: T
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorDetail
    meta: ResponseMeta


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return request_id


def build_meta(request: Request) -> ResponseMeta:
    # The scope is attached by the session dependency; public routes have none.
    scope = getattr(request.state, "scope", None)
    if scope is None or not scope.has_tenant:
        return ResponseMeta(request_id=request_id_for(request))
    return ResponseMeta(
        request_id=request_id_for(request),
        tenant_id=scope.effective_tenant_id(),
        impersonating=scope.is_impersonating,
    )


def is_api_request(request: Request) -> bool:
    return request.url.path.startswith(f"/{API_VERSION}/")


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": build_meta(request).model_dump()}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error = ErrorDetail(code=code, message=message, details=details)
    return {"error": error.model_dump(exclude_none=True), "meta": build_meta(request).model_dump()}
