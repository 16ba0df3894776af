from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from portalsync.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from portalsync.apps.api.response import SuccessEnvelope, success_response
from portalsync.services.telemetry import counters_snapshot, external_calls_by_integration

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)

_METRICS_WINDOW_S = 300


class HealthResponse(BaseModel):
    status: str


class MetricsResponse(BaseModel):
    sessions: int
    in_flight_dispatches: int
    counters: dict[str, int]
    external_calls: dict[str, dict[str, float | int | None]]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok")
    return success_response(request=request, data=payload)


@router.get("/ops/metrics", response_model=SuccessEnvelope[MetricsResponse])
async def metrics(request: Request) -> dict:
    registry = request.app.state.sessions
    payload = MetricsResponse(
        sessions=len(registry),
        in_flight_dispatches=registry.gateway.in_flight,
        counters=counters_snapshot(),
        external_calls=external_calls_by_integration(_METRICS_WINDOW_S),
    )
    return success_response(request=request, data=payload)
