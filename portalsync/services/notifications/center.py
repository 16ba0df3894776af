from __future__ import annotations

from dataclasses import replace
import logging
from typing import Sequence

from portalsync.core.config import get_settings
from portalsync.core.errors import LocalWriteFailure, NotFoundError, StoreError
from portalsync.domain.entities import NotificationRecord
from portalsync.persistence.stores import NotificationStore
from portalsync.services.notifications.display import collapse_for_display
from portalsync.services.notifications.toasts import ToastAction, ToastSink
from portalsync.services.scope import ImpersonationScope


logger = logging.getLogger(__name__)

RETRY_DELETE_LABEL = "Réessayer la suppression"


class NotificationCenter:
    """Visible notification list and the denormalized unread counter.

    Only this class mutates the list or the counter. Mutations are optimistic:
    the local view changes first and is restored to its exact prior value if
    the store rejects the write. The tenant is read from the scope on every
    call, so a scope switch retargets the next operation.
    """

    def __init__(
        self,
        *,
        scope: ImpersonationScope,
        store: NotificationStore,
        toasts: ToastSink,
        limit: int | None = None,
        display_bucket_s: float | None = None,
        topic_keywords: Sequence[str] | None = None,
    ) -> None:
        settings = get_settings()
        self._scope = scope
        self._store = store
        self._toasts = toasts
        self._limit = limit if limit is not None else settings.notification_list_limit
        self._bucket_s = display_bucket_s if display_bucket_s is not None else settings.display_dedupe_bucket_s
        self._topic_keywords = list(topic_keywords if topic_keywords is not None else settings.display_topic_keywords)
        self._items: list[NotificationRecord] = []
        self._unread = 0
        # Bumped on reset so writes that resolve after a scope switch leave the new view alone.
        self._generation = 0

    @property
    def items(self) -> list[NotificationRecord]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return self._unread

    @property
    def limit(self) -> int:
        return self._limit

    def reset(self) -> None:
        self._items = []
        self._unread = 0
        self._generation += 1

    async def load(self, limit: int | None = None) -> list[NotificationRecord]:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        rows = await self._store.list_recent(tenant_id, limit or self._limit)
        unread = await self._store.count_unread(tenant_id)
        if generation != self._generation:
            return self.items
        self._items = collapse_for_display(rows, bucket_s=self._bucket_s, topic_keywords=self._topic_keywords)
        self._unread = unread
        return self.items

    async def refresh_unread_count(self) -> int:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        unread = await self._store.count_unread(tenant_id)
        if generation == self._generation:
            self._unread = unread
        return self._unread

    def ingest_fresh(self, event: NotificationRecord) -> bool:
        """Prepend an admitted event; returns False when it was not applied."""
        if event.tenant_id != self._scope.effective_tenant_id():
            logger.info("notification_ignored_out_of_scope id=%s", event.id)
            return False
        if any(item.id == event.id for item in self._items):
            return False
        self._items = [event, *self._items][: self._limit]
        if not event.is_read:
            self._unread += 1
        return True

    async def mark_read(self, notification_id: str) -> None:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        previous_items, previous_unread = list(self._items), self._unread
        visible = any(item.id == notification_id for item in self._items)
        for index, item in enumerate(self._items):
            if item.id == notification_id and not item.is_read:
                self._items[index] = replace(item, is_read=True)
                self._unread = max(0, self._unread - 1)
                break

        try:
            found = await self._store.mark_read(tenant_id, notification_id)
        except StoreError as exc:
            self._restore(generation, previous_items, previous_unread)
            logger.warning("notification_mark_read_failed id=%s", notification_id, exc_info=exc)
            self._toasts.error("Erreur", "Impossible de marquer la notification comme lue.")
            raise LocalWriteFailure(f"notification {notification_id} could not be marked read") from exc
        if not found:
            self._restore(generation, previous_items, previous_unread)
            raise NotFoundError(f"notification {notification_id} not found")
        if not visible:
            # Collapsed or beyond the limit; only the store knows whether it was unread.
            await self.refresh_unread_count()

    async def mark_all_read(self) -> int:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        previous_items, previous_unread = list(self._items), self._unread
        self._items = [replace(item, is_read=True) if not item.is_read else item for item in self._items]
        self._unread = 0

        try:
            changed = await self._store.mark_all_read(tenant_id)
        except StoreError as exc:
            self._restore(generation, previous_items, previous_unread)
            logger.warning("notification_mark_all_read_failed tenant_id=%s", tenant_id, exc_info=exc)
            self._toasts.error("Erreur", "Impossible de tout marquer comme lu.")
            raise LocalWriteFailure("notifications could not be marked read") from exc
        return changed

    async def delete(self, notification_id: str) -> None:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        previous_items, previous_unread = list(self._items), self._unread
        removed = next((item for item in self._items if item.id == notification_id), None)
        if removed is not None:
            self._items = [item for item in self._items if item.id != notification_id]
            if not removed.is_read:
                self._unread = max(0, self._unread - 1)

        try:
            found = await self._store.delete(tenant_id, notification_id)
        except StoreError as exc:
            self._restore(generation, previous_items, previous_unread)
            logger.warning("notification_delete_failed id=%s", notification_id, exc_info=exc)
            self._toasts.error(
                "Erreur",
                "Impossible de supprimer la notification.",
                action=ToastAction(RETRY_DELETE_LABEL, lambda: self.delete(notification_id)),
            )
            raise LocalWriteFailure(f"notification {notification_id} could not be deleted") from exc
        if not found:
            self._restore(generation, previous_items, previous_unread)
            raise NotFoundError(f"notification {notification_id} not found")

    async def delete_all(self) -> int:
        tenant_id = self._scope.effective_tenant_id()
        generation = self._generation
        previous_items, previous_unread = list(self._items), self._unread
        self._items = []
        self._unread = 0

        try:
            deleted = await self._store.delete_all(tenant_id)
        except StoreError as exc:
            self._restore(generation, previous_items, previous_unread)
            logger.warning("notification_delete_all_failed tenant_id=%s", tenant_id, exc_info=exc)
            self._toasts.error(
                "Erreur",
                "Impossible de supprimer les notifications.",
                action=ToastAction(RETRY_DELETE_LABEL, self.delete_all),
            )
            raise LocalWriteFailure("notifications could not be deleted") from exc
        logger.info("notifications_deleted tenant_id=%s count=%s", tenant_id, deleted)
        return deleted

    def _restore(self, generation: int, items: list[NotificationRecord], unread: int) -> None:
        if generation != self._generation:
            return
        self._items = items
        self._unread = unread
