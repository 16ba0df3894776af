from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Literal, get_args
from uuid import uuid4


SubscriptionStatus = Literal["pending", "active", "paused", "cancelled"]
BillingCycle = Literal["monthly", "yearly"]
Severity = Literal["info", "success", "warning", "error"]
InvoiceStatus = Literal["pending", "paid", "overdue", "open", "void"]
ChangeOp = Literal["INSERT", "UPDATE", "DELETE"]

SUBSCRIPTION_STATUSES: tuple[str, ...] = get_args(SubscriptionStatus)
BILLING_CYCLES: tuple[str, ...] = get_args(BillingCycle)
SEVERITIES: tuple[str, ...] = get_args(Severity)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    # Calendar date used for billing dates and deadline horizons alike.
    return utc_now().date()


def new_id() -> str:
    return uuid4().hex


def as_utc(value: datetime) -> datetime:
    # Some drivers (sqlite) hand back naive datetimes; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return as_utc(raw)
    if isinstance(raw, str) and raw:
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    return utc_now()


@dataclass(frozen=True)
class TenantProfile:
    # Billing contact details owned by the profile collaborator.
    tenant_id: str
    email: str = ""
    full_name: str = ""
    company_name: str = ""
    stripe_customer_id: str | None = None
    vat_number: str | None = None
    address: str | None = None
    role: str = "client"


@dataclass(frozen=True)
class SubscriptionRecord:
    id: str
    tenant_id: str
    service_name: str
    amount: Decimal
    billing_cycle: BillingCycle
    status: SubscriptionStatus = "pending"
    currency: str = "EUR"
    tax_rate: Decimal = Decimal("0")
    # None until the billing workflow has provisioned the upstream object.
    external_reference_id: str | None = None
    start_date: date | None = None
    next_billing_date: date | None = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class NotificationRecord:
    id: str
    tenant_id: str
    title: str
    message: str = ""
    severity: Severity = "info"
    link: str | None = None
    is_read: bool = False
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "NotificationRecord":
        # Parse the realtime row shape {id, user_id, title, message, type, link, is_read, created_at}.
        severity = str(payload.get("type") or "info")
        if severity not in SEVERITIES:
            severity = "info"
        return cls(
            id=str(payload["id"]),
            tenant_id=str(payload.get("user_id") or ""),
            title=str(payload.get("title") or ""),
            message=str(payload.get("message") or ""),
            severity=severity,  # type: ignore[arg-type]
            link=payload.get("link") or None,
            is_read=bool(payload.get("is_read", False)),
            created_at=_parse_timestamp(payload.get("created_at")),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.tenant_id,
            "title": self.title,
            "message": self.message,
            "type": self.severity,
            "link": self.link,
            "is_read": self.is_read,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class InvoiceRecord:
    id: str
    tenant_id: str
    number: str
    status: InvoiceStatus
    due_date: date | None = None


@dataclass(frozen=True)
class ChangeEvent:
    # One row-level change as delivered by the store's change stream.
    table: str
    op: ChangeOp
    tenant_id: str
    row: dict[str, Any]
