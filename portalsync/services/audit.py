from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsync.core.config import get_settings
from portalsync.domain.entities import utc_now
from portalsync.domain.models import AuditEvent


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["secret", "signature", "token", "password", "vat_number", "address"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub billing contact details and credentials from audit metadata.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


@dataclass(frozen=True)
class AuditEntry:
    tenant_id: str | None
    actor_id: str | None
    event_type: str
    outcome: str
    resource_type: str | None = None
    resource_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    occurred_at: datetime = field(default_factory=utc_now)


class AuditLog(Protocol):
    async def record(self, entry: AuditEntry) -> None: ...


class SqlAuditLog:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        event = AuditEvent(
            occurred_at=entry.occurred_at,
            tenant_id=entry.tenant_id,
            actor_id=entry.actor_id,
            event_type=entry.event_type,
            outcome=entry.outcome,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            metadata_json=sanitize_metadata(entry.metadata),
            error_code=entry.error_code,
        )
        async with self._session_factory() as session:
            try:
                session.add(event)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning("audit_event_write_failed event_type=%s", entry.event_type, exc_info=exc)


class InMemoryAuditLog:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(
            AuditEntry(
                tenant_id=entry.tenant_id,
                actor_id=entry.actor_id,
                event_type=entry.event_type,
                outcome=entry.outcome,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                metadata=sanitize_metadata(entry.metadata),
                error_code=entry.error_code,
                occurred_at=entry.occurred_at,
            )
        )


async def record_event(audit_log: AuditLog | None, entry: AuditEntry) -> None:
    # Write audit rows in a best-effort manner to avoid breaking subscription flows.
    if audit_log is None or not get_settings().audit_enabled:
        return
    try:
        await audit_log.record(entry)
    except Exception as exc:  # noqa: BLE001 - audit failures must not fail the caller
        logger.warning("audit_event_write_failed event_type=%s", entry.event_type, exc_info=exc)
