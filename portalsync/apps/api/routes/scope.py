from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from portalsync.apps.api.deps import get_portal_session
from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.services.portal import PortalSession

router = APIRouter(prefix="/scope", tags=["scope"], responses=DEFAULT_ERROR_RESPONSES)


class ScopeRequest(BaseModel):
    tenant_id: str = Field(min_length=1)


class ScopeResponse(BaseModel):
    operator_id: str
    operator_tenant_id: str | None
    effective_tenant_id: str | None
    is_impersonating: bool


def _scope_payload(session: PortalSession) -> ScopeResponse:
    scope = session.scope
    return ScopeResponse(
        operator_id=scope.operator_id,
        operator_tenant_id=scope.operator_tenant_id,
        effective_tenant_id=scope.effective_tenant_id() if scope.has_tenant else None,
        is_impersonating=scope.is_impersonating,
    )


@router.get("", response_model=SuccessEnvelope[ScopeResponse])
async def get_scope(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    return success_response(request=request, data=_scope_payload(session))


@router.put("", response_model=SuccessEnvelope[ScopeResponse])
async def set_scope(
    request: Request,
    body: ScopeRequest,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    await session.switch_tenant(body.tenant_id)
    return success_response(request=request, data=_scope_payload(session))


@router.delete("", response_model=SuccessEnvelope[ScopeResponse])
async def reset_scope(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    await session.reset_scope()
    return success_response(request=request, data=_scope_payload(session))
