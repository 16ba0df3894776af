from __future__ import annotations

import asyncio

from portalsync.core.logging import configure_logging
from portalsync.persistence.db import SessionLocal
from portalsync.persistence.repos.notifications import SqlNotificationStore
from portalsync.services.maintenance import prune_notifications


async def prune() -> None:
    configure_logging()
    deleted = await prune_notifications(SqlNotificationStore(SessionLocal))
    print(f"pruned_notifications={deleted}")


if __name__ == "__main__":
    asyncio.run(prune())
