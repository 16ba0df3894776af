from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsync.core.errors import StoreError
from portalsync.domain.entities import ChangeEvent, NotificationRecord, as_utc
from portalsync.domain.models import Notification
from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.guards import tenant_predicate
from portalsync.persistence.stores import NOTIFICATIONS_TABLE


def _to_record(row: Notification) -> NotificationRecord:
    return NotificationRecord(
        id=row.id,
        tenant_id=row.user_id,
        title=row.title,
        message=row.message or "",
        severity=row.type,  # type: ignore[arg-type]
        link=row.link,
        is_read=bool(row.is_read),
        created_at=as_utc(row.created_at),
    )


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqlNotificationStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broadcaster: ChangeBroadcaster | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._broadcaster = broadcaster

    def _publish(self, op: str, record: NotificationRecord) -> None:
        # Publish only after commit so subscribers never observe rolled-back rows.
        if self._broadcaster is None:
            return
        self._broadcaster.publish(
            ChangeEvent(table=NOTIFICATIONS_TABLE, op=op, tenant_id=record.tenant_id, row=record.to_payload())  # type: ignore[arg-type]
        )

    async def insert(self, record: NotificationRecord) -> NotificationRecord:
        row = Notification(
            id=record.id,
            user_id=record.tenant_id,
            title=record.title,
            message=record.message,
            type=record.severity,
            link=record.link,
            is_read=record.is_read,
            created_at=record.created_at,
        )
        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification insert failed") from exc
        self._publish("INSERT", record)
        return record

    async def list_recent(self, tenant_id: str, limit: int) -> list[NotificationRecord]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Notification)
                    .where(tenant_predicate(Notification.user_id, tenant_id))
                    .order_by(Notification.created_at.desc())
                    .limit(max(limit, 0))
                )
            except SQLAlchemyError as exc:
                raise StoreError("notification list failed") from exc
            return [_to_record(row) for row in result.scalars().all()]

    async def count_unread(self, tenant_id: str) -> int:
        async with self._session_factory() as session:
            try:
                count = await session.scalar(
                    select(func.count())
                    .select_from(Notification)
                    .where(
                        tenant_predicate(Notification.user_id, tenant_id),
                        Notification.is_read.is_(False),
                    )
                )
            except SQLAlchemyError as exc:
                raise StoreError("unread count failed") from exc
            return int(count or 0)

    async def mark_read(self, tenant_id: str, notification_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                row = (
                    await session.execute(
                        select(Notification).where(
                            tenant_predicate(Notification.user_id, tenant_id),
                            Notification.id == notification_id,
                        )
                    )
                ).scalar_one_or_none()
                if row is None:
                    return False
                changed = not row.is_read
                row.is_read = True
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification mark_read failed") from exc
            record = _to_record(row)
        if changed:
            self._publish("UPDATE", record)
        return True

    async def mark_all_read(self, tenant_id: str) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    update(Notification)
                    .where(
                        tenant_predicate(Notification.user_id, tenant_id),
                        Notification.is_read.is_(False),
                    )
                    .values(is_read=True)
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification mark_all_read failed") from exc
            return result.rowcount or 0

    async def delete(self, tenant_id: str, notification_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                row = (
                    await session.execute(
                        select(Notification).where(
                            tenant_predicate(Notification.user_id, tenant_id),
                            Notification.id == notification_id,
                        )
                    )
                ).scalar_one_or_none()
                if row is None:
                    return False
                record = _to_record(row)
                await session.delete(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification delete failed") from exc
        self._publish("DELETE", record)
        return True

    async def delete_all(self, tenant_id: str) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    delete(Notification).where(tenant_predicate(Notification.user_id, tenant_id))
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification delete_all failed") from exc
            return result.rowcount or 0

    async def exists_since(
        self,
        tenant_id: str,
        *,
        title_fragment: str,
        message_fragment: str,
        since: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            try:
                found = await session.scalar(
                    select(Notification.id)
                    .where(
                        tenant_predicate(Notification.user_id, tenant_id),
                        Notification.title.ilike(f"%{_escape_like(title_fragment)}%", escape="\\"),
                        Notification.message.ilike(f"%{_escape_like(message_fragment)}%", escape="\\"),
                        Notification.created_at >= since,
                    )
                    .limit(1)
                )
            except SQLAlchemyError as exc:
                raise StoreError("notification lookup failed") from exc
            return found is not None

    async def prune_before(self, cutoff: datetime) -> int:
        async with self._session_factory() as session:
            try:
                result = await session.execute(delete(Notification).where(Notification.created_at < cutoff))
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("notification prune failed") from exc
            return result.rowcount or 0
