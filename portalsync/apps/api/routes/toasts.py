from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from portalsync.apps.api.deps import get_portal_session
from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.services.portal import PortalSession

router = APIRouter(prefix="/toasts", tags=["toasts"], responses=DEFAULT_ERROR_RESPONSES)


class ToastResponse(BaseModel):
    id: str
    kind: str
    title: str
    message: str
    action: str | None


class ToastActionResponse(BaseModel):
    id: str
    completed: bool


@router.get("", response_model=SuccessEnvelope[list[ToastResponse]])
async def drain_toasts(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    await session.sync()
    toasts = [ToastResponse(**toast.to_dict()) for toast in session.toasts.drain()]
    return success_response(request=request, data=toasts)


@router.post("/{toast_id}/action", response_model=SuccessEnvelope[ToastActionResponse])
async def run_toast_action(
    request: Request,
    toast_id: str,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    await session.toasts.run_action(toast_id)
    return success_response(request=request, data=ToastActionResponse(id=toast_id, completed=True))
