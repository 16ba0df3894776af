from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest

from portalsync.domain.entities import InvoiceRecord
from portalsync.persistence.memory import InMemoryInvoiceStore, InMemoryNotificationStore
from portalsync.services.deadlines import DeadlineScanner
from portalsync.services.scope import ImpersonationScope
from portalsync.tests.utils.fakes import make_notification


TODAY = date(2026, 3, 10)


def _scanner(invoices, notifications, *, tenant_id: str = "tenant-a") -> DeadlineScanner:
    scope = ImpersonationScope(operator_id="op-1", operator_tenant_id=tenant_id)
    return DeadlineScanner(
        scope=scope,
        invoices=invoices,
        notifications=notifications,
        warning_days=[3, 1],
        today=lambda: TODAY,
    )


def _invoice(number: str, *, days: int | None, status: str = "pending", tenant_id: str = "tenant-a") -> InvoiceRecord:
    due = TODAY + timedelta(days=days) if days is not None else None
    return InvoiceRecord(id=number.lower(), tenant_id=tenant_id, number=number, status=status, due_date=due)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_invoice_due_in_three_days_is_warned_once_per_day() -> None:
    invoices = InMemoryInvoiceStore([_invoice("F-2026-014", days=3)])
    notifications = InMemoryNotificationStore()
    scanner = _scanner(invoices, notifications)

    created = await scanner.scan()
    again = await scanner.scan()

    [record] = created
    assert record.title == "Échéance proche (3j) : F-2026-014"
    assert record.message == "La facture F-2026-014 arrive à échéance dans 3 jour(s)."
    assert record.severity == "warning"
    assert record.link == "invoices"
    assert record.is_read is False
    assert again == []
    assert len(await notifications.list_recent("tenant-a", 20)) == 1


@pytest.mark.asyncio
async def test_only_configured_horizons_of_unpaid_invoices_are_warned() -> None:
    invoices = InMemoryInvoiceStore(
        [
            _invoice("F-1", days=1),
            _invoice("F-2", days=2),
            _invoice("F-3", days=3, status="paid"),
            _invoice("F-4", days=None),
            _invoice("F-5", days=-1, status="overdue"),
            _invoice("F-6", days=3, tenant_id="tenant-b"),
        ]
    )
    notifications = InMemoryNotificationStore()

    created = await _scanner(invoices, notifications).scan()

    assert [record.title for record in created] == ["Échéance proche (1j) : F-1"]


@pytest.mark.asyncio
async def test_warning_from_a_previous_day_does_not_block_today() -> None:
    notifications = InMemoryNotificationStore()
    yesterday = datetime(2026, 3, 9, 18, 0, tzinfo=timezone.utc)
    await notifications.insert(
        make_notification(
            title="Échéance proche (3j) : F-7",
            message="La facture F-7 arrive à échéance dans 3 jour(s).",
            created_at=yesterday,
        )
    )
    invoices = InMemoryInvoiceStore([_invoice("F-7", days=3)])

    created = await _scanner(invoices, notifications).scan()

    assert len(created) == 1


@pytest.mark.asyncio
async def test_bootstrap_runs_once_per_tenant() -> None:
    invoices = InMemoryInvoiceStore([_invoice("F-8", days=1)])
    notifications = InMemoryNotificationStore()
    scanner = _scanner(invoices, notifications)

    assert len(await scanner.bootstrap()) == 1
    await notifications.delete_all("tenant-a")

    assert await scanner.bootstrap() == []


@pytest.mark.asyncio
async def test_invoices_without_number_are_keyed_by_id() -> None:
    invoices = InMemoryInvoiceStore(
        [
            InvoiceRecord(id="inv-a", tenant_id="tenant-a", number="", status="pending", due_date=TODAY + timedelta(days=1)),
            InvoiceRecord(id="inv-b", tenant_id="tenant-a", number=" ", status="pending", due_date=TODAY + timedelta(days=1)),
        ]
    )
    notifications = InMemoryNotificationStore()
    scanner = _scanner(invoices, notifications)

    created = await scanner.scan()

    assert sorted(record.title for record in created) == ["Échéance proche (1j) : inv-a", "Échéance proche (1j) : inv-b"]
    assert await scanner.scan() == []


@pytest.mark.asyncio
async def test_default_clock_is_the_utc_date(monkeypatch) -> None:
    monkeypatch.setattr("portalsync.services.deadlines.utc_today", lambda: TODAY)
    invoices = InMemoryInvoiceStore([_invoice("F-2026-020", days=3)])
    scanner = DeadlineScanner(
        scope=ImpersonationScope(operator_id="op-1", operator_tenant_id="tenant-a"),
        invoices=invoices,
        notifications=InMemoryNotificationStore(),
        warning_days=[3],
    )

    [created] = await scanner.scan()

    assert created.title == "Échéance proche (3j) : F-2026-020"
