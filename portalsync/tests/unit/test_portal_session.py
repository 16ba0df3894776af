from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest

from portalsync.core.errors import TenantScopeError
from portalsync.domain.entities import InvoiceRecord
from portalsync.services.portal import PortalSession, SessionRegistry, in_memory_backend
from portalsync.services.scope import ImpersonationScope
from portalsync.tests.utils.fakes import RecordingGateway, make_notification, make_profile, make_subscription


TODAY = date(2026, 3, 10)


async def _session(*, role: str = "admin", tenant_id: str | None = "tenant-a"):
    backend = in_memory_backend()
    backend.profiles.add(make_profile("tenant-a"))
    backend.profiles.add(make_profile("tenant-b"))
    gateway = RecordingGateway()
    session = PortalSession(
        operator_id="op-1",
        operator_tenant_id=tenant_id,
        role=role,  # type: ignore[arg-type]
        backend=backend,
        gateway=gateway,  # type: ignore[arg-type]
        today=lambda: TODAY,
    )
    return session, backend, gateway


@pytest.mark.asyncio
async def test_bootstrap_loads_list_and_runs_deadline_scan() -> None:
    session, backend, _gateway = await _session()
    backend.invoices.add(
        InvoiceRecord(id="inv-1", tenant_id="tenant-a", number="F-100", status="pending", due_date=TODAY + timedelta(days=3))
    )

    await session.bootstrap()

    assert [item.title for item in session.center.items] == ["Échéance proche (3j) : F-100"]
    assert session.center.unread_count == 1
    assert [toast.kind for toast in session.toasts.pending()] == ["warning"]


@pytest.mark.asyncio
async def test_switching_scope_retargets_every_component_without_dispatch() -> None:
    session, backend, gateway = await _session()
    await backend.notifications.insert(make_notification(tenant_id="tenant-a", title="A"))
    await backend.notifications.insert(make_notification(tenant_id="tenant-b", title="B"))
    await backend.subscriptions.create(make_subscription(tenant_id="tenant-a"))
    backend.invoices.add(
        InvoiceRecord(id="inv-b", tenant_id="tenant-b", number="F-B1", status="open", due_date=TODAY + timedelta(days=1))
    )
    await session.bootstrap()
    assert [item.title for item in session.center.items] == ["A"]

    await session.switch_tenant("tenant-b")

    assert session.scope.is_impersonating is True
    assert {item.tenant_id for item in session.center.items} == {"tenant-b"}
    assert session.feed.subscribed_tenant_id == "tenant-b"
    assert await session.subscriptions.list_subscriptions() == []
    created = await session.subscriptions.create_subscription(
        service_name="SEO", amount=Decimal("90"), billing_cycle="monthly"
    )
    assert created.tenant_id == "tenant-b"
    await session.center.mark_all_read()
    assert await backend.notifications.count_unread("tenant-b") == 0
    assert await backend.notifications.count_unread("tenant-a") == 1

    await backend.notifications.insert(make_notification(tenant_id="tenant-a", title="A2"))
    await session.sync()
    assert all(item.tenant_id == "tenant-b" for item in session.center.items)
    assert gateway.payloads == []


@pytest.mark.asyncio
async def test_clients_cannot_impersonate() -> None:
    session, _backend, _gateway = await _session(role="client")
    await session.bootstrap()

    with pytest.raises(TenantScopeError):
        await session.switch_tenant("tenant-b")
    assert session.scope.effective_tenant_id() == "tenant-a"


@pytest.mark.asyncio
async def test_reset_scope_returns_to_own_tenant() -> None:
    session, _backend, _gateway = await _session()
    await session.switch_tenant("tenant-b")

    await session.reset_scope()

    assert session.scope.effective_tenant_id() == "tenant-a"
    assert session.scope.is_impersonating is False


@pytest.mark.asyncio
async def test_notify_rejects_other_tenants() -> None:
    session, _backend, _gateway = await _session()
    await session.bootstrap()

    with pytest.raises(TenantScopeError):
        await session.notify(make_notification(tenant_id="tenant-b"))


def test_scope_without_tenant_refuses_to_resolve() -> None:
    scope = ImpersonationScope(operator_id="admin-1", operator_tenant_id=None)
    changes: list[tuple[str | None, str | None]] = []
    scope.on_change(lambda previous, current: changes.append((previous, current)))

    with pytest.raises(TenantScopeError):
        scope.effective_tenant_id()

    scope.set_effective_tenant_id("tenant-b")
    scope.set_effective_tenant_id("tenant-b")
    assert changes == [(None, "tenant-b")]
    assert scope.is_impersonating is True


@pytest.mark.asyncio
async def test_registry_closes_idle_sessions() -> None:
    backend = in_memory_backend()
    now = {"t": 0.0}
    registry = SessionRegistry(
        backend=backend,
        gateway=RecordingGateway(),  # type: ignore[arg-type]
        today=lambda: TODAY,
        idle_ttl_s=60.0,
        clock=lambda: now["t"],
    )
    idle = await registry.get_or_create(operator_id="op-1", operator_tenant_id="tenant-a", role="client")
    await backend.notifications.insert(make_notification(tenant_id="tenant-a"))
    assert idle.feed.backlog == 1

    now["t"] = 61.0
    active = await registry.get_or_create(operator_id="op-2", operator_tenant_id="tenant-b", role="client")

    assert len(registry) == 1
    assert idle.feed.subscribed_tenant_id is None
    assert idle.feed.backlog == 0
    assert active.feed.subscribed_tenant_id == "tenant-b"
    assert backend.broadcaster.subscriber_count(table="notifications") == 1
    assert await registry.get_or_create(operator_id="op-2", operator_tenant_id="tenant-b", role="client") is active
