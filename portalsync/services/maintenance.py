from __future__ import annotations

from datetime import datetime, timedelta
import logging

from portalsync.core.config import get_settings
from portalsync.domain.entities import utc_now
from portalsync.persistence.stores import NotificationStore


logger = logging.getLogger(__name__)


async def prune_notifications(
    store: NotificationStore,
    *,
    retention_days: int | None = None,
    now: datetime | None = None,
) -> int:
    # Remove notifications past the retention window to keep storage bounded.
    days = retention_days if retention_days is not None else get_settings().notification_retention_days
    cutoff = (now or utc_now()) - timedelta(days=days)
    deleted = await store.prune_before(cutoff)
    logger.info("notifications_pruned count=%s cutoff=%s", deleted, cutoff.isoformat())
    return deleted
