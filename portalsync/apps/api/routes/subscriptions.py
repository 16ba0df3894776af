from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from portalsync.apps.api.deps import get_portal_session, require_admin
from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.domain.entities import SubscriptionRecord
from portalsync.services.portal import PortalSession
from portalsync.services.sync_gateway import SYNC_MODE_WIRE

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"], responses=DEFAULT_ERROR_RESPONSES)


class SubscriptionCreateRequest(BaseModel):
    service_name: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    billing_cycle: Literal["monthly", "yearly"]
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0)
    next_billing_date: date | None = None


class TransitionRequest(BaseModel):
    # Free-form so unknown statuses are rejected as invalid transitions, not schema errors.
    target_status: str


class ExternalReferenceRequest(BaseModel):
    stripe_id: str = Field(min_length=1)


class SubscriptionResponse(BaseModel):
    id: str
    tenant_id: str
    service_name: str
    amount: Decimal
    currency: str
    billing_cycle: str
    tax_rate: Decimal
    status: str
    stripe_subscription_id: str | None
    start_date: date | None
    next_billing_date: date | None
    created_at: datetime


class TransitionResponse(BaseModel):
    subscription: SubscriptionResponse
    mode: str
    intent_id: str
    dispatched: bool


class DeletedResponse(BaseModel):
    id: str
    deleted: bool


def _to_response(record: SubscriptionRecord) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=record.id,
        tenant_id=record.tenant_id,
        service_name=record.service_name,
        amount=record.amount,
        currency=record.currency,
        billing_cycle=record.billing_cycle,
        tax_rate=record.tax_rate,
        status=record.status,
        stripe_subscription_id=record.external_reference_id,
        start_date=record.start_date,
        next_billing_date=record.next_billing_date,
        created_at=record.created_at,
    )


@router.get("", response_model=SuccessEnvelope[list[SubscriptionResponse]])
async def list_subscriptions(request: Request, session: PortalSession = Depends(get_portal_session)) -> dict:
    rows = await session.subscriptions.list_subscriptions()
    return success_response(request=request, data=[_to_response(row) for row in rows])


@router.post("", response_model=SuccessEnvelope[SubscriptionResponse], status_code=201)
async def create_subscription(
    request: Request,
    body: SubscriptionCreateRequest,
    session: PortalSession = Depends(require_admin),
) -> dict:
    created = await session.subscriptions.create_subscription(
        service_name=body.service_name,
        amount=body.amount,
        billing_cycle=body.billing_cycle,
        currency=body.currency,
        tax_rate=body.tax_rate,
        next_billing_date=body.next_billing_date,
    )
    return success_response(request=request, data=_to_response(created))


@router.post("/{subscription_id}/transition", response_model=SuccessEnvelope[TransitionResponse])
async def transition_subscription(
    request: Request,
    subscription_id: str,
    body: TransitionRequest,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    current = await session.subscriptions.get_subscription(subscription_id)
    result = await session.subscriptions.request_transition(current, body.target_status)
    payload = TransitionResponse(
        subscription=_to_response(result.subscription),
        mode=SYNC_MODE_WIRE[result.mode],
        intent_id=result.intent.id,
        dispatched=result.intent.scheduled,
    )
    return success_response(request=request, data=payload)


@router.post(
    "/{subscription_id}/external-reference",
    response_model=SuccessEnvelope[SubscriptionResponse],
)
async def record_external_reference(
    request: Request,
    subscription_id: str,
    body: ExternalReferenceRequest,
    session: PortalSession = Depends(get_portal_session),
) -> dict:
    updated = await session.subscriptions.record_external_reference(subscription_id, body.stripe_id)
    return success_response(request=request, data=_to_response(updated))


@router.delete("/{subscription_id}", response_model=SuccessEnvelope[DeletedResponse])
async def delete_subscription(
    request: Request,
    subscription_id: str,
    session: PortalSession = Depends(require_admin),
) -> dict:
    await session.subscriptions.delete_subscription(subscription_id)
    return success_response(request=request, data=DeletedResponse(id=subscription_id, deleted=True))
