from __future__ import annotations

from portalsync.core.errors import TenantScopeError


def require_tenant_id(tenant_id: str | None) -> str:
    # Refuse unscoped queries; every tenant-owned read/write carries a tenant id.
    if not tenant_id:
        raise TenantScopeError("Tenant predicate required but tenant_id is missing")
    return tenant_id


def tenant_predicate(column, tenant_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    return column == require_tenant_id(tenant_id)
