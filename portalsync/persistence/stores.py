from __future__ import annotations

from datetime import date, datetime
from typing import Protocol

from portalsync.domain.entities import (
    InvoiceRecord,
    NotificationRecord,
    SubscriptionRecord,
    TenantProfile,
)


NOTIFICATIONS_TABLE = "notifications"
SUBSCRIPTIONS_TABLE = "subscriptions"


class NotificationStore(Protocol):
    # Tenant-scoped CRUD over notification rows; implementations publish row changes.
    async def insert(self, record: NotificationRecord) -> NotificationRecord: ...

    async def list_recent(self, tenant_id: str, limit: int) -> list[NotificationRecord]: ...

    async def count_unread(self, tenant_id: str) -> int: ...

    async def mark_read(self, tenant_id: str, notification_id: str) -> bool: ...

    async def mark_all_read(self, tenant_id: str) -> int: ...

    async def delete(self, tenant_id: str, notification_id: str) -> bool: ...

    async def delete_all(self, tenant_id: str) -> int: ...

    async def exists_since(
        self,
        tenant_id: str,
        *,
        title_fragment: str,
        message_fragment: str,
        since: datetime,
    ) -> bool: ...

    async def prune_before(self, cutoff: datetime) -> int: ...


class SubscriptionStore(Protocol):
    async def create(self, record: SubscriptionRecord) -> SubscriptionRecord: ...

    async def get(self, tenant_id: str, subscription_id: str) -> SubscriptionRecord | None: ...

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionRecord]: ...

    # update_status raises StatusConflict when expected_status is given and differs from the row.
    # set_external_reference is a no-op for the same id and raises ExternalReferenceConflict otherwise.
    async def update_status(
        self,
        tenant_id: str,
        subscription_id: str,
        *,
        status: str,
        start_date: date | None = None,
        expected_status: str | None = None,
    ) -> SubscriptionRecord: ...

    async def set_external_reference(
        self,
        tenant_id: str,
        subscription_id: str,
        external_reference_id: str,
    ) -> SubscriptionRecord: ...

    async def delete(self, tenant_id: str, subscription_id: str) -> bool: ...


class InvoiceStore(Protocol):
    async def list_unpaid(self, tenant_id: str) -> list[InvoiceRecord]: ...


class ProfileDirectory(Protocol):
    async def get_profile(self, tenant_id: str) -> TenantProfile | None: ...

    async def list_profiles(self) -> list[TenantProfile]: ...
