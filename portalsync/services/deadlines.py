from __future__ import annotations

from datetime import date, datetime, time, timezone
import logging
from typing import Callable, Sequence

from portalsync.core.config import get_settings
from portalsync.domain.entities import InvoiceRecord, NotificationRecord, new_id, utc_today
from portalsync.persistence.stores import InvoiceStore, NotificationStore
from portalsync.services.scope import ImpersonationScope


logger = logging.getLogger(__name__)


def deadline_marker(days: int) -> str:
    return f"Échéance proche ({days}j)"


def invoice_label(invoice: InvoiceRecord) -> str:
    # A blank number would match every message in the daily guard, so fall back to the id.
    return invoice.number.strip() or invoice.id


def build_deadline_notification(tenant_id: str, number: str, days: int) -> NotificationRecord:
    return NotificationRecord(
        id=new_id(),
        tenant_id=tenant_id,
        title=f"{deadline_marker(days)} : {number}",
        message=f"La facture {number} arrive à échéance dans {days} jour(s).",
        severity="warning",
        link="invoices",
    )


class DeadlineScanner:
    """Synthesizes due-date warnings for unpaid invoices of the scope tenant.

    The once-per-day guard is a lookup for a matching notification created
    since midnight (UTC), not a unique constraint, so two scanners racing on
    the same tenant can both insert.
    """

    def __init__(
        self,
        *,
        scope: ImpersonationScope,
        invoices: InvoiceStore,
        notifications: NotificationStore,
        warning_days: Sequence[int] | None = None,
        today: Callable[[], date] | None = None,
    ) -> None:
        self._scope = scope
        self._invoices = invoices
        self._notifications = notifications
        self._warning_days = frozenset(
            warning_days if warning_days is not None else get_settings().deadline_warning_days
        )
        self._today = today or utc_today
        self._bootstrapped: set[str] = set()

    async def scan(self) -> list[NotificationRecord]:
        tenant_id = self._scope.effective_tenant_id()
        today = self._today()
        start_of_day = datetime.combine(today, time.min, tzinfo=timezone.utc)
        created: list[NotificationRecord] = []
        for invoice in await self._invoices.list_unpaid(tenant_id):
            if invoice.due_date is None:
                continue
            days = (invoice.due_date - today).days
            if days not in self._warning_days:
                continue
            label = invoice_label(invoice)
            already_warned = await self._notifications.exists_since(
                tenant_id,
                title_fragment=deadline_marker(days),
                message_fragment=label,
                since=start_of_day,
            )
            if already_warned:
                continue
            record = await self._notifications.insert(build_deadline_notification(tenant_id, label, days))
            created.append(record)
        if created:
            logger.info("deadline_warnings_created tenant_id=%s count=%s", tenant_id, len(created))
        return created

    async def bootstrap(self) -> list[NotificationRecord]:
        # Session start runs the scan once per tenant; later calls are no-ops.
        tenant_id = self._scope.effective_tenant_id()
        if tenant_id in self._bootstrapped:
            return []
        self._bootstrapped.add(tenant_id)
        return await self.scan()
