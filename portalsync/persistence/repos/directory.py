from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsync.core.errors import StoreError
from portalsync.domain.entities import InvoiceRecord, TenantProfile
from portalsync.domain.models import Invoice, Profile
from portalsync.persistence.guards import require_tenant_id, tenant_predicate


# Read-only views over tables owned by the invoicing and profile collaborators.


def _to_profile(row: Profile) -> TenantProfile:
    return TenantProfile(
        tenant_id=row.id,
        email=row.email or "",
        full_name=row.full_name or "",
        company_name=row.company_name or "",
        stripe_customer_id=row.stripe_customer_id,
        vat_number=row.vat_number,
        address=row.address,
        role=row.role or "client",
    )


class SqlInvoiceStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_unpaid(self, tenant_id: str) -> list[InvoiceRecord]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    select(Invoice).where(
                        tenant_predicate(Invoice.user_id, tenant_id),
                        Invoice.status != "paid",
                    )
                )
            except SQLAlchemyError as exc:
                raise StoreError("invoice list failed") from exc
            return [
                InvoiceRecord(
                    id=row.id,
                    tenant_id=row.user_id,
                    number=row.number,
                    status=row.status,  # type: ignore[arg-type]
                    due_date=row.due_date,
                )
                for row in result.scalars().all()
            ]


class SqlProfileDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_profile(self, tenant_id: str) -> TenantProfile | None:
        require_tenant_id(tenant_id)
        async with self._session_factory() as session:
            try:
                row = await session.get(Profile, tenant_id)
            except SQLAlchemyError as exc:
                raise StoreError("profile lookup failed") from exc
            return _to_profile(row) if row is not None else None

    async def list_profiles(self) -> list[TenantProfile]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(select(Profile).order_by(Profile.company_name.asc()))
            except SQLAlchemyError as exc:
                raise StoreError("profile list failed") from exc
            return [_to_profile(row) for row in result.scalars().all()]
