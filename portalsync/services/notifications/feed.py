from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Callable, Literal

from portalsync.core.config import get_settings
from portalsync.core.errors import PortalSyncError
from portalsync.domain.entities import ChangeEvent, NotificationRecord
from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.stores import NOTIFICATIONS_TABLE, NotificationStore
from portalsync.services.notifications.center import NotificationCenter
from portalsync.services.notifications.deduper import Admission, EventDeduper
from portalsync.services.notifications.toasts import ToastSink
from portalsync.services.scope import ImpersonationScope
from portalsync.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

FeedSource = Literal["realtime", "refetch", "local"]


@dataclass(frozen=True)
class _FeedItem:
    event: NotificationRecord
    source: FeedSource


class NotificationFeed:
    """Single queue through which every notification producer is deduplicated.

    Realtime inserts from the change stream, re-fetched rows and optimistic
    local inserts are enqueued and drained in arrival order through one
    deduper. Fresh realtime and local events reach the center and raise a
    toast; duplicates only refresh the unread counter. Re-fetched rows are
    recorded by the deduper but never prepended one by one: once the queue is
    drained the center reloads its collapsed list from the store. The queue is
    bounded; on overflow the backlog is dropped and the same reload recovers
    the state.
    """

    def __init__(
        self,
        *,
        scope: ImpersonationScope,
        store: NotificationStore,
        broadcaster: ChangeBroadcaster,
        deduper: EventDeduper,
        center: NotificationCenter,
        toasts: ToastSink,
        max_backlog: int | None = None,
    ) -> None:
        self._scope = scope
        self._store = store
        self._broadcaster = broadcaster
        self._deduper = deduper
        self._center = center
        self._toasts = toasts
        self._queue: asyncio.Queue[_FeedItem] = asyncio.Queue(
            maxsize=max_backlog if max_backlog is not None else get_settings().feed_max_backlog
        )
        self._unsubscribe: Callable[[], None] | None = None
        self._subscribed_tenant_id: str | None = None
        self._reload_pending = False

    @property
    def subscribed_tenant_id(self) -> str | None:
        return self._subscribed_tenant_id

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    @property
    def reload_pending(self) -> bool:
        return self._reload_pending

    def start(self) -> None:
        self.stop()
        tenant_id = self._scope.effective_tenant_id()
        self._unsubscribe = self._broadcaster.subscribe(
            table=NOTIFICATIONS_TABLE,
            tenant_id=tenant_id,
            handler=self._on_change,
            ops=("INSERT",),
        )
        self._subscribed_tenant_id = tenant_id
        logger.info("notification_feed_subscribed tenant_id=%s", tenant_id)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._subscribed_tenant_id = None
        self._clear()

    def _clear(self) -> int:
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        return dropped

    def restart(self) -> None:
        # Queued events belong to the previous tenant; start() drops them with the old subscription.
        self._reload_pending = False
        self.start()

    def submit(self, event: NotificationRecord, *, source: FeedSource = "realtime") -> None:
        try:
            self._queue.put_nowait(_FeedItem(event=event, source=source))
        except asyncio.QueueFull:
            dropped = self._clear()
            self._reload_pending = True
            increment_counter("notification_feed_overflow_total")
            logger.warning(
                "notification_feed_overflow tenant_id=%s dropped=%s",
                self._subscribed_tenant_id,
                dropped + 1,
            )

    def _on_change(self, change: ChangeEvent) -> None:
        self.submit(NotificationRecord.from_payload(change.row), source="realtime")

    async def refetch(self) -> int:
        tenant_id = self._scope.effective_tenant_id()
        rows = await self._store.list_recent(tenant_id, self._center.limit)
        for row in sorted(rows, key=lambda item: item.created_at):
            self.submit(row, source="refetch")
        return len(rows)

    async def insert_local(self, record: NotificationRecord) -> NotificationRecord:
        # The store echo of this insert arrives through the change stream and is deduplicated by id.
        stored = await self._store.insert(record)
        self.submit(stored, source="local")
        return stored

    async def process(self, event: NotificationRecord, *, source: FeedSource = "realtime") -> Admission:
        admission = self._deduper.admit(event)
        if source == "refetch":
            self._reload_pending = True
            return admission
        if not admission.fresh:
            await self._center.refresh_unread_count()
            return admission
        if not self._center.ingest_fresh(event):
            await self._center.refresh_unread_count()
            return admission
        self._toasts.push(event.severity, event.title, event.message)
        return admission

    async def _settle(self) -> None:
        if not self._reload_pending or not self._queue.empty():
            return
        self._reload_pending = False
        await self._center.load()

    async def process_pending(self) -> list[Admission]:
        admissions: list[Admission] = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            try:
                admissions.append(await self.process(item.event, source=item.source))
            finally:
                self._queue.task_done()
        await self._settle()
        return admissions

    async def run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.process(item.event, source=item.source)
                await self._settle()
            except PortalSyncError as exc:
                logger.warning("notification_feed_process_failed id=%s", item.event.id, exc_info=exc)
            finally:
                self._queue.task_done()
