from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime

from portalsync.core.errors import ExternalReferenceConflict, NotFoundError, StatusConflict
from portalsync.domain.entities import (
    ChangeEvent,
    InvoiceRecord,
    NotificationRecord,
    SubscriptionRecord,
    TenantProfile,
    as_utc,
)
from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.guards import require_tenant_id
from portalsync.persistence.stores import NOTIFICATIONS_TABLE, SUBSCRIPTIONS_TABLE


# Dict-backed stores for deterministic tests and lightweight embedding. They honor the
# same tenant guards and change-stream contract as the SQL repositories.


class InMemoryNotificationStore:
    def __init__(self, broadcaster: ChangeBroadcaster | None = None) -> None:
        self._rows: dict[str, NotificationRecord] = {}
        self._broadcaster = broadcaster

    def _publish(self, op: str, record: NotificationRecord) -> None:
        if self._broadcaster is None:
            return
        self._broadcaster.publish(
            ChangeEvent(table=NOTIFICATIONS_TABLE, op=op, tenant_id=record.tenant_id, row=record.to_payload())  # type: ignore[arg-type]
        )

    def _owned(self, tenant_id: str) -> list[NotificationRecord]:
        require_tenant_id(tenant_id)
        return [row for row in self._rows.values() if row.tenant_id == tenant_id]

    async def insert(self, record: NotificationRecord) -> NotificationRecord:
        require_tenant_id(record.tenant_id)
        self._rows[record.id] = record
        self._publish("INSERT", record)
        return record

    async def list_recent(self, tenant_id: str, limit: int) -> list[NotificationRecord]:
        rows = sorted(self._owned(tenant_id), key=lambda row: row.created_at, reverse=True)
        return rows[: max(limit, 0)]

    async def count_unread(self, tenant_id: str) -> int:
        return sum(1 for row in self._owned(tenant_id) if not row.is_read)

    async def mark_read(self, tenant_id: str, notification_id: str) -> bool:
        require_tenant_id(tenant_id)
        row = self._rows.get(notification_id)
        if row is None or row.tenant_id != tenant_id:
            return False
        if not row.is_read:
            updated = replace(row, is_read=True)
            self._rows[notification_id] = updated
            self._publish("UPDATE", updated)
        return True

    async def mark_all_read(self, tenant_id: str) -> int:
        changed = 0
        for row in self._owned(tenant_id):
            if row.is_read:
                continue
            updated = replace(row, is_read=True)
            self._rows[row.id] = updated
            self._publish("UPDATE", updated)
            changed += 1
        return changed

    async def delete(self, tenant_id: str, notification_id: str) -> bool:
        require_tenant_id(tenant_id)
        row = self._rows.get(notification_id)
        if row is None or row.tenant_id != tenant_id:
            return False
        del self._rows[notification_id]
        self._publish("DELETE", row)
        return True

    async def delete_all(self, tenant_id: str) -> int:
        owned = self._owned(tenant_id)
        for row in owned:
            del self._rows[row.id]
            self._publish("DELETE", row)
        return len(owned)

    async def exists_since(
        self,
        tenant_id: str,
        *,
        title_fragment: str,
        message_fragment: str,
        since: datetime,
    ) -> bool:
        title_needle = title_fragment.casefold()
        message_needle = message_fragment.casefold()
        cutoff = as_utc(since)
        return any(
            title_needle in row.title.casefold()
            and message_needle in row.message.casefold()
            and row.created_at >= cutoff
            for row in self._owned(tenant_id)
        )

    async def prune_before(self, cutoff: datetime) -> int:
        threshold = as_utc(cutoff)
        expired = [row_id for row_id, row in self._rows.items() if row.created_at < threshold]
        for row_id in expired:
            del self._rows[row_id]
        return len(expired)


class InMemorySubscriptionStore:
    def __init__(self, broadcaster: ChangeBroadcaster | None = None) -> None:
        self._rows: dict[str, SubscriptionRecord] = {}
        self._broadcaster = broadcaster

    def _publish(self, op: str, record: SubscriptionRecord) -> None:
        if self._broadcaster is None:
            return
        row = {
            "id": record.id,
            "tenant_id": record.tenant_id,
            "status": record.status,
            "stripe_subscription_id": record.external_reference_id,
        }
        self._broadcaster.publish(
            ChangeEvent(table=SUBSCRIPTIONS_TABLE, op=op, tenant_id=record.tenant_id, row=row)  # type: ignore[arg-type]
        )

    def _require(self, tenant_id: str, subscription_id: str) -> SubscriptionRecord:
        require_tenant_id(tenant_id)
        row = self._rows.get(subscription_id)
        if row is None or row.tenant_id != tenant_id:
            raise NotFoundError(f"subscription {subscription_id} not found")
        return row

    async def create(self, record: SubscriptionRecord) -> SubscriptionRecord:
        require_tenant_id(record.tenant_id)
        self._rows[record.id] = record
        self._publish("INSERT", record)
        return record

    async def get(self, tenant_id: str, subscription_id: str) -> SubscriptionRecord | None:
        require_tenant_id(tenant_id)
        row = self._rows.get(subscription_id)
        if row is None or row.tenant_id != tenant_id:
            return None
        return row

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionRecord]:
        require_tenant_id(tenant_id)
        rows = [row for row in self._rows.values() if row.tenant_id == tenant_id]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    async def update_status(
        self,
        tenant_id: str,
        subscription_id: str,
        *,
        status: str,
        start_date: date | None = None,
        expected_status: str | None = None,
    ) -> SubscriptionRecord:
        row = self._require(tenant_id, subscription_id)
        if expected_status is not None and row.status != expected_status:
            raise StatusConflict(subscription_id, expected_status, row.status)
        updated = replace(row, status=status)  # type: ignore[arg-type]
        if start_date is not None:
            updated = replace(updated, start_date=start_date)
        self._rows[subscription_id] = updated
        self._publish("UPDATE", updated)
        return updated

    async def set_external_reference(
        self,
        tenant_id: str,
        subscription_id: str,
        external_reference_id: str,
    ) -> SubscriptionRecord:
        row = self._require(tenant_id, subscription_id)
        if row.external_reference_id is not None:
            if row.external_reference_id == external_reference_id:
                return row
            raise ExternalReferenceConflict(
                f"subscription {subscription_id} already references {row.external_reference_id}"
            )
        updated = replace(row, external_reference_id=external_reference_id)
        self._rows[subscription_id] = updated
        self._publish("UPDATE", updated)
        return updated

    async def delete(self, tenant_id: str, subscription_id: str) -> bool:
        require_tenant_id(tenant_id)
        row = self._rows.get(subscription_id)
        if row is None or row.tenant_id != tenant_id:
            return False
        del self._rows[subscription_id]
        self._publish("DELETE", row)
        return True


class InMemoryInvoiceStore:
    def __init__(self, invoices: list[InvoiceRecord] | None = None) -> None:
        self._rows: dict[str, InvoiceRecord] = {row.id: row for row in invoices or []}

    def add(self, invoice: InvoiceRecord) -> None:
        self._rows[invoice.id] = invoice

    async def list_unpaid(self, tenant_id: str) -> list[InvoiceRecord]:
        require_tenant_id(tenant_id)
        return [
            row
            for row in self._rows.values()
            if row.tenant_id == tenant_id and row.status != "paid"
        ]


class InMemoryProfileDirectory:
    def __init__(self, profiles: list[TenantProfile] | None = None) -> None:
        self._rows: dict[str, TenantProfile] = {row.tenant_id: row for row in profiles or []}

    def add(self, profile: TenantProfile) -> None:
        self._rows[profile.tenant_id] = profile

    async def get_profile(self, tenant_id: str) -> TenantProfile | None:
        require_tenant_id(tenant_id)
        return self._rows.get(tenant_id)

    async def list_profiles(self) -> list[TenantProfile]:
        return sorted(self._rows.values(), key=lambda row: row.company_name)
