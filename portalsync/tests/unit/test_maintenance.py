from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from portalsync.persistence.memory import InMemoryNotificationStore
from portalsync.services.maintenance import prune_notifications
from portalsync.tests.utils.fakes import make_notification


@pytest.mark.asyncio
async def test_prune_removes_notifications_past_retention() -> None:
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    store = InMemoryNotificationStore()
    old = make_notification(title="Ancienne", created_at=now - timedelta(days=31))
    recent = make_notification(title="Récente", created_at=now - timedelta(days=29))
    other_tenant_old = make_notification(tenant_id="tenant-b", created_at=now - timedelta(days=45))
    for record in (old, recent, other_tenant_old):
        await store.insert(record)

    deleted = await prune_notifications(store, retention_days=30, now=now)

    assert deleted == 2
    assert [row.id for row in await store.list_recent("tenant-a", 20)] == [recent.id]
    assert await store.list_recent("tenant-b", 20) == []


@pytest.mark.asyncio
async def test_prune_uses_configured_retention(monkeypatch) -> None:
    monkeypatch.setenv("NOTIFICATION_RETENTION_DAYS", "7")
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    store = InMemoryNotificationStore()
    await store.insert(make_notification(created_at=now - timedelta(days=8)))

    assert await prune_notifications(store, now=now) == 1
