from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from portalsync.core.errors import StoreError
from portalsync.domain.entities import (
    NotificationRecord,
    SubscriptionRecord,
    TenantProfile,
    new_id,
    utc_now,
)
from portalsync.services.sync_gateway import DispatchIntent


class RecordingGateway:
    # Stands in for the HTTP gateway; keeps every dispatched payload in order.
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    def dispatch(self, payload: dict[str, Any]) -> DispatchIntent:
        self.payloads.append(payload)
        return DispatchIntent(
            id=new_id(),
            mode=payload["mode"],
            subscription_id=payload["subscription"]["id"],
            scheduled=True,
        )

    @property
    def modes(self) -> list[str]:
        return [payload["mode"] for payload in self.payloads]


class FlakyStore:
    """Delegates to a real store; methods named in ``failing`` raise StoreError."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.failing: set[str] = set()

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.inner, name)
        if name not in self.failing:
            return attr

        async def _fail(*args: Any, **kwargs: Any) -> Any:
            raise StoreError(f"{name} rejected")

        return _fail


class YieldingStore:
    """Delegates to a real store, suspending once before every call.

    Lets concurrent callers interleave at each await the way a database round trip would.
    """

    def __init__(self, inner: Any) -> None:
        self.inner = inner

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self.inner, name)
        if not callable(attr):
            return attr

        async def _call(*args: Any, **kwargs: Any) -> Any:
            await asyncio.sleep(0)
            return await attr(*args, **kwargs)

        return _call


def make_profile(tenant_id: str = "tenant-a") -> TenantProfile:
    return TenantProfile(
        tenant_id=tenant_id,
        email=f"billing@{tenant_id}.example",
        full_name="Camille Martin",
        company_name=f"{tenant_id} SAS",
        stripe_customer_id="cus_123",
        vat_number="FR12345678901",
        address="1 rue de la Paix, Paris",
    )


def make_subscription(
    tenant_id: str = "tenant-a",
    *,
    status: str = "pending",
    external_reference_id: str | None = None,
    amount: str = "49.90",
    billing_cycle: str = "monthly",
) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=new_id(),
        tenant_id=tenant_id,
        service_name="Maintenance site web",
        amount=Decimal(amount),
        billing_cycle=billing_cycle,  # type: ignore[arg-type]
        status=status,  # type: ignore[arg-type]
        tax_rate=Decimal("20"),
        external_reference_id=external_reference_id,
    )


def make_notification(
    tenant_id: str = "tenant-a",
    *,
    title: str = "Paiement reçu",
    message: str = "",
    link: str | None = "invoices",
    severity: str = "success",
    is_read: bool = False,
    created_at: datetime | None = None,
    seconds_ago: float = 0.0,
) -> NotificationRecord:
    created = created_at or utc_now() - timedelta(seconds=seconds_ago)
    return NotificationRecord(
        id=new_id(),
        tenant_id=tenant_id,
        title=title,
        message=message,
        severity=severity,  # type: ignore[arg-type]
        link=link,
        is_read=is_read,
        created_at=created,
    )
