from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsync.core.errors import ExternalReferenceConflict, NotFoundError, StatusConflict, StoreError
from portalsync.domain.entities import ChangeEvent, SubscriptionRecord, as_utc
from portalsync.domain.models import Subscription
from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.guards import tenant_predicate
from portalsync.persistence.stores import SUBSCRIPTIONS_TABLE


def _to_record(row: Subscription) -> SubscriptionRecord:
    return SubscriptionRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        service_name=row.service_name,
        amount=Decimal(row.amount),
        billing_cycle=row.billing_cycle,  # type: ignore[arg-type]
        status=row.status,  # type: ignore[arg-type]
        currency=row.currency,
        tax_rate=Decimal(row.tax_rate if row.tax_rate is not None else 0),
        external_reference_id=row.stripe_subscription_id,
        start_date=row.start_date,
        next_billing_date=row.next_billing_date,
        created_at=as_utc(row.created_at),
    )


class SqlSubscriptionStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broadcaster: ChangeBroadcaster | None = None,
    ) -> None:
        self._session_factory = session_factory
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

    async def _load(
        self,
        session: AsyncSession,
        tenant_id: str,
        subscription_id: str,
        *,
        for_update: bool = False,
    ) -> Subscription | None:
        stmt = select(Subscription).where(
            tenant_predicate(Subscription.tenant_id, tenant_id),
            Subscription.id == subscription_id,
        )
        if for_update:
            # Row lock so conditional writes compare against the committed value.
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, record: SubscriptionRecord) -> SubscriptionRecord:
        row = Subscription(
            id=record.id,
            tenant_id=record.tenant_id,
            service_name=record.service_name,
            amount=record.amount,
            currency=record.currency,
            billing_cycle=record.billing_cycle,
            tax_rate=record.tax_rate,
            stripe_subscription_id=record.external_reference_id,
            status=record.status,
            start_date=record.start_date,
            next_billing_date=record.next_billing_date,
            created_at=record.created_at,
        )
        async with self._session_factory() as session:
            try:
                session.add(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("subscription insert failed") from exc
        self._publish("INSERT", record)
        return record

    async def get(self, tenant_id: str, subscription_id: str) -> SubscriptionRecord | None:
        async with self._session_factory() as session:
            try:
                row = await self._load(session, tenant_id, subscription_id)
            except SQLAlchemyError as exc:
                raise StoreError("subscription lookup failed") from exc
            return _to_record(row) if row is not None else None

    async def list_for_tenant(self, tenant_id: str) -> list[SubscriptionRecord]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Subscription)
                    .where(tenant_predicate(Subscription.tenant_id, tenant_id))
                    .order_by(Subscription.created_at.desc())
                )
            except SQLAlchemyError as exc:
                raise StoreError("subscription list failed") from exc
            return [_to_record(row) for row in result.scalars().all()]

    async def update_status(
        self,
        tenant_id: str,
        subscription_id: str,
        *,
        status: str,
        start_date: date | None = None,
        expected_status: str | None = None,
    ) -> SubscriptionRecord:
        async with self._session_factory() as session:
            try:
                row = await self._load(session, tenant_id, subscription_id, for_update=True)
                if row is None:
                    raise NotFoundError(f"subscription {subscription_id} not found")
                if expected_status is not None and row.status != expected_status:
                    raise StatusConflict(subscription_id, expected_status, row.status)
                row.status = status
                if start_date is not None:
                    row.start_date = start_date
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("subscription status update failed") from exc
            record = _to_record(row)
        self._publish("UPDATE", record)
        return record

    async def set_external_reference(
        self,
        tenant_id: str,
        subscription_id: str,
        external_reference_id: str,
    ) -> SubscriptionRecord:
        async with self._session_factory() as session:
            try:
                row = await self._load(session, tenant_id, subscription_id, for_update=True)
                if row is None:
                    raise NotFoundError(f"subscription {subscription_id} not found")
                if row.stripe_subscription_id is not None:
                    if row.stripe_subscription_id == external_reference_id:
                        return _to_record(row)
                    raise ExternalReferenceConflict(
                        f"subscription {subscription_id} already references {row.stripe_subscription_id}"
                    )
                row.stripe_subscription_id = external_reference_id
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("subscription reference update failed") from exc
            record = _to_record(row)
        self._publish("UPDATE", record)
        return record

    async def delete(self, tenant_id: str, subscription_id: str) -> bool:
        async with self._session_factory() as session:
            try:
                row = await self._load(session, tenant_id, subscription_id)
                if row is None:
                    return False
                record = _to_record(row)
                await session.delete(row)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise StoreError("subscription delete failed") from exc
        self._publish("DELETE", record)
        return True
