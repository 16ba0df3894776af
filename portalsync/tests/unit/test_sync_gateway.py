from __future__ import annotations

import json

import httpx
import pytest

from portalsync.services.resilience import RetryPolicy
from portalsync.services.sync_gateway import (
    ExternalSyncGateway,
    build_sync_payload,
    build_sync_signature,
)
from portalsync.services.telemetry import counters_snapshot
from portalsync.tests.utils.fakes import make_profile, make_subscription


URL = "https://billing.example/hooks/subscription"
POLICY = RetryPolicy(timeout_ms=1000, max_attempts=2, backoff_ms=1)


def _payload() -> dict:
    return build_sync_payload(
        mode="create",
        target_status="active",
        subscription=make_subscription(),
        profile=make_profile(),
    )


@pytest.mark.asyncio
async def test_dispatch_posts_signed_payload_in_background() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ignored": True})

    gateway = ExternalSyncGateway(url=URL, secret="s3cret", policy=POLICY, transport=httpx.MockTransport(handler))
    payload = _payload()

    intent = gateway.dispatch(payload)
    assert intent.scheduled is True
    assert intent.mode == "subscription_start"
    await gateway.drain()

    [request] = seen
    assert request.headers["X-Sync-Mode"] == "subscription_start"
    assert request.headers["X-Sync-Signature"] == build_sync_signature("s3cret", request.content)
    assert json.loads(request.content) == payload
    assert gateway.in_flight == 0
    assert counters_snapshot()["sync_dispatch_sent_total"] == 1


@pytest.mark.asyncio
async def test_connect_errors_are_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(202)

    gateway = ExternalSyncGateway(url=URL, policy=POLICY, transport=httpx.MockTransport(handler))
    gateway.dispatch(_payload())
    await gateway.drain()

    assert calls["count"] == 2
    assert counters_snapshot()["sync_dispatch_sent_total"] == 1


@pytest.mark.asyncio
async def test_read_timeouts_are_not_retried_and_never_raise() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ReadTimeout("no response", request=request)

    gateway = ExternalSyncGateway(url=URL, policy=POLICY, transport=httpx.MockTransport(handler))
    intent = gateway.dispatch(_payload())
    await gateway.drain()

    assert intent.scheduled is True
    assert calls["count"] == 1
    assert counters_snapshot()["sync_dispatch_failed_total"] == 1


@pytest.mark.asyncio
async def test_error_status_is_logged_not_raised(caplog) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    gateway = ExternalSyncGateway(url=URL, policy=POLICY, transport=httpx.MockTransport(handler))
    gateway.dispatch(_payload())
    await gateway.drain()

    assert counters_snapshot()["sync_dispatch_failed_total"] == 1
    assert "sync_dispatch_rejected" in caplog.text


@pytest.mark.asyncio
async def test_dispatch_without_url_is_skipped() -> None:
    gateway = ExternalSyncGateway(url="", policy=POLICY)

    intent = gateway.dispatch(_payload())

    assert intent.scheduled is False
    assert gateway.in_flight == 0
    assert counters_snapshot()["sync_dispatch_skipped_total"] == 1


def test_payload_maps_interval_and_numbers() -> None:
    payload = build_sync_payload(
        mode="update",
        target_status="paused",
        subscription=make_subscription(status="active", external_reference_id="sub_1", amount="1200", billing_cycle="yearly"),
        profile=make_profile(),
    )

    assert payload["mode"] == "update_status"
    assert payload["subscription"]["interval"] == "year"
    assert payload["subscription"]["amount"] == 1200
    assert payload["subscription"]["stripe_id"] == "sub_1"
    assert payload["client"] == {
        "email": "billing@tenant-a.example",
        "name": "Camille Martin",
        "company": "tenant-a SAS",
        "supabase_user_id": "tenant-a",
        "stripe_customer_id": "cus_123",
        "vat_number": "FR12345678901",
        "address": "1 rue de la Paix, Paris",
    }
