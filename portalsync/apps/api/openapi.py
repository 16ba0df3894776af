from __future__ import annotations

from typing import Any

from portalsync.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1", "tenant_id": "tenant_example", "impersonating": False},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing X-Operator-Id header"),
    403: _response(
        "Tenant scope violation",
        code="TENANT_SCOPE_VIOLATION",
        message="Subscription does not belong to the effective tenant",
    ),
    404: _response("Not found", code="NOT_FOUND", message="Subscription not found"),
    409: _response(
        "Invalid transition",
        code="INVALID_TRANSITION",
        message="cannot transition subscription from cancelled to active",
        details={"current": "cancelled", "target": "active"},
    ),
    422: _response("Validation error", code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    503: _response(
        "Local write failed",
        code="LOCAL_WRITE_FAILED",
        message="subscription status write failed after dispatch",
        details={"dispatched": True},
    ),
}
