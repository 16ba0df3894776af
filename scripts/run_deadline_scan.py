from __future__ import annotations

import argparse
import asyncio

from portalsync.core.logging import configure_logging
from portalsync.persistence.db import SessionLocal
from portalsync.services.deadlines import DeadlineScanner
from portalsync.services.portal import sql_backend
from portalsync.services.scope import ImpersonationScope


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create invoice due-date warnings")
    parser.add_argument("--tenant", action="append", default=None, help="Tenant id; repeat or omit for all tenants")
    return parser


async def _scan(args: argparse.Namespace) -> int:
    configure_logging()
    backend = sql_backend(SessionLocal)
    tenant_ids = args.tenant or [profile.tenant_id for profile in await backend.profiles.list_profiles()]
    total = 0
    for tenant_id in tenant_ids:
        scope = ImpersonationScope(operator_id="system", operator_tenant_id=tenant_id)
        scanner = DeadlineScanner(scope=scope, invoices=backend.invoices, notifications=backend.notifications)
        created = await scanner.scan()
        total += len(created)
    print(f"deadline_warnings_created={total} tenants={len(tenant_ids)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_scan(_build_parser().parse_args())))
