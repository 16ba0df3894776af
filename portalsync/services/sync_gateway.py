from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Any, Literal

import httpx

from portalsync.core.config import get_settings
from portalsync.domain.entities import SubscriptionRecord, TenantProfile, new_id, utc_now
from portalsync.services.resilience import RetryPolicy, dispatch_retry_policy, retry_async
from portalsync.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

SyncMode = Literal["create", "update"]

# Wire discriminator understood by the billing workflow.
SYNC_MODE_WIRE: dict[str, str] = {
    "create": "subscription_start",
    "update": "update_status",
}
BILLING_INTERVALS: dict[str, str] = {
    "monthly": "month",
    "yearly": "year",
}

_INTEGRATION = "billing.sync"


def _as_number(value: Decimal) -> int | float:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def build_sync_payload(
    *,
    mode: SyncMode,
    target_status: str,
    subscription: SubscriptionRecord,
    profile: TenantProfile,
) -> dict[str, Any]:
    """Assemble the outbound transition intent.

    The receiving workflow branches on ``mode``: ``subscription_start``
    provisions the upstream subscription and later reports its id back,
    ``update_status`` acts on the existing ``stripe_id``.
    """
    return {
        "mode": SYNC_MODE_WIRE[mode],
        "target_status": target_status,
        "subscription": {
            "id": subscription.id,
            "name": subscription.service_name,
            "amount": _as_number(subscription.amount),
            "interval": BILLING_INTERVALS[subscription.billing_cycle],
            "currency": subscription.currency,
            "status": subscription.status,
            "stripe_id": subscription.external_reference_id,
            "tax_rate": _as_number(subscription.tax_rate),
        },
        "client": {
            "email": profile.email,
            "name": profile.full_name,
            "company": profile.company_name,
            "supabase_user_id": profile.tenant_id,
            "stripe_customer_id": profile.stripe_customer_id,
            "vat_number": profile.vat_number,
            "address": profile.address,
        },
    }


def build_sync_signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


@dataclass(frozen=True)
class DispatchIntent:
    # Handle for a sent-or-skipped dispatch; it never carries the external outcome.
    id: str
    mode: str
    subscription_id: str | None
    scheduled: bool
    created_at: datetime = field(default_factory=utc_now)


def _connect_phase_error(exc: Exception) -> bool:
    # The request never left the client, so a retry cannot double-apply the intent.
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


class ExternalSyncGateway:
    """Fire-and-forget POST of transition intents to the billing workflow."""

    def __init__(
        self,
        *,
        url: str | None = None,
        secret: str | None = None,
        timeout_ms: int | None = None,
        policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._url = url if url is not None else settings.sync_webhook_url
        self._secret = secret if secret is not None else settings.sync_webhook_secret
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.sync_webhook_timeout_ms
        self._policy = policy or dispatch_retry_policy()
        self._transport = transport
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(self, payload: dict[str, Any]) -> DispatchIntent:
        mode = str(payload.get("mode", ""))
        subscription_id = (payload.get("subscription") or {}).get("id")
        intent_id = new_id()
        if not self._url:
            logger.info(
                "sync_dispatch_skipped reason=no_url mode=%s subscription_id=%s",
                mode,
                subscription_id,
            )
            increment_counter("sync_dispatch_skipped_total")
            return DispatchIntent(id=intent_id, mode=mode, subscription_id=subscription_id, scheduled=False)

        task = asyncio.get_running_loop().create_task(self._send(intent_id, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return DispatchIntent(id=intent_id, mode=mode, subscription_id=subscription_id, scheduled=True)

    async def drain(self) -> None:
        # Await every in-flight dispatch; used on shutdown and by tests.
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _send(self, intent_id: str, payload: dict[str, Any]) -> None:
        mode = str(payload.get("mode", ""))
        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "X-Sync-Mode": mode,
        }
        if self._secret:
            headers["X-Sync-Signature"] = build_sync_signature(self._secret, body)
        timeout = self._timeout_ms / 1000.0
        url = self._url or ""

        async def _call() -> httpx.Response:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                return await client.post(url, content=body, headers=headers)

        start = time.monotonic()
        try:
            response = await retry_async(_call, policy=self._policy, retryable=_connect_phase_error)
        except Exception as exc:  # noqa: BLE001 - dispatch failures never reach the caller
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            increment_counter("sync_dispatch_failed_total")
            logger.warning("sync_dispatch_failed intent_id=%s mode=%s", intent_id, mode, exc_info=exc)
            return

        success = response.status_code < 400
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
        if not success:
            increment_counter("sync_dispatch_failed_total")
            logger.warning(
                "sync_dispatch_rejected intent_id=%s mode=%s status_code=%s",
                intent_id,
                mode,
                response.status_code,
            )
            return
        increment_counter("sync_dispatch_sent_total")
        logger.info("sync_dispatch_sent intent_id=%s mode=%s", intent_id, mode)
