from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from portalsync.apps.api.deps import get_portal_session
from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.apps.api.routes.notifications import NotificationResponse, notification_response
from portalsync.services.portal import PortalSession

router = APIRouter(prefix="/deadlines", tags=["deadlines"], responses=DEFAULT_ERROR_RESPONSES)


class DeadlineScanResponse(BaseModel):
    created: list[NotificationResponse]


@router.post("/scan", response_model=SuccessEnvelope[DeadlineScanResponse])
async def scan_deadlines(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    created = await session.scanner.scan()
    await session.sync()
    payload = DeadlineScanResponse(created=[notification_response(record) for record in created])
    return success_response(request=request, data=payload)
