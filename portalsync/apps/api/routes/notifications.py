from __future__ import annotations

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from portalsync.apps.api.deps import get_portal_session, require_admin
from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.domain.entities import NotificationRecord, new_id
from portalsync.services.portal import PortalSession

router = APIRouter(prefix="/notifications", tags=["notifications"], responses=DEFAULT_ERROR_RESPONSES)


class NotificationCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    message: str = ""
    type: Literal["info", "success", "warning", "error"] = "info"
    link: str | None = None


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str
    link: str | None
    is_read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    unread_count: int


class UnreadCountResponse(BaseModel):
    unread_count: int


class BulkResultResponse(BaseModel):
    affected: int
    unread_count: int


def notification_response(record: NotificationRecord) -> NotificationResponse:
    return NotificationResponse(
        id=record.id,
        user_id=record.tenant_id,
        title=record.title,
        message=record.message,
        type=record.severity,
        link=record.link,
        is_read=record.is_read,
        created_at=record.created_at,
    )


def _list_payload(session: PortalSession) -> NotificationListResponse:
    return NotificationListResponse(
        items=[notification_response(item) for item in session.center.items],
        unread_count=session.center.unread_count,
    )


@router.get("", response_model=SuccessEnvelope[NotificationListResponse])
async def list_notifications(
    request: Request,
    limit: int | None = Query(default=None, ge=1, le=100),
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    await session.sync()
    await session.center.load(limit)
    return success_response(request=request, data=_list_payload(session))


@router.post("", response_model=SuccessEnvelope[NotificationResponse], status_code=201)
async def create_notification(
    request: Request,
    body: NotificationCreateRequest,
    session: PortalSession = Depends(require_admin),
) -> dict:
    record = NotificationRecord(
        id=new_id(),
        tenant_id=session.scope.effective_tenant_id(),
        title=body.title,
        message=body.message,
        severity=body.type,
        link=body.link,
    )
    stored = await session.notify(record)
    return success_response(request=request, data=notification_response(stored))


@router.get("/unread-count", response_model=SuccessEnvelope[UnreadCountResponse])
async def unread_count(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    await session.sync()
    count = await session.center.refresh_unread_count()
    return success_response(request=request, data=UnreadCountResponse(unread_count=count))


@router.post("/read-all", response_model=SuccessEnvelope[BulkResultResponse])
async def mark_all_read(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    await session.sync()
    changed = await session.center.mark_all_read()
    payload = BulkResultResponse(affected=changed, unread_count=session.center.unread_count)
    return success_response(request=request, data=payload)


@router.post("/{notification_id}/read", response_model=SuccessEnvelope[NotificationListResponse])
async def mark_read(
    request: Request,
    notification_id: str,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    await session.sync()
    await session.center.mark_read(notification_id)
    return success_response(request=request, data=_list_payload(session))


@router.delete("", response_model=SuccessEnvelope[BulkResultResponse])
async def delete_all(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    await session.sync()
    deleted = await session.center.delete_all()
    payload = BulkResultResponse(affected=deleted, unread_count=session.center.unread_count)
    return success_response(request=request, data=payload)


@router.delete("/{notification_id}", response_model=SuccessEnvelope[NotificationListResponse])
async def delete_notification(
    request: Request,
    notification_id: str,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    await session.sync()
    await session.center.delete(notification_id)
    return success_response(request=request, data=_list_payload(session))
