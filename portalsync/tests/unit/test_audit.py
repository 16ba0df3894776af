from __future__ import annotations

import pytest

from portalsync.services.audit import AuditEntry, InMemoryAuditLog, record_event, sanitize_metadata


class _BrokenAuditLog:
    async def record(self, entry: AuditEntry) -> None:
        raise RuntimeError("audit sink down")


def test_sanitize_metadata_redacts_contact_details_and_secrets() -> None:
    metadata = {
        "mode": "update",
        "client": {"vat_number": "FR1", "address": "Paris", "email": "a@b.c"},
        "attempts": [{"signature": "abc"}],
    }

    sanitized = sanitize_metadata(metadata)

    assert sanitized["mode"] == "update"
    assert sanitized["client"] == {"vat_number": "[REDACTED]", "address": "[REDACTED]", "email": "a@b.c"}
    assert sanitized["attempts"] == [{"signature": "[REDACTED]"}]


@pytest.mark.asyncio
async def test_record_event_is_best_effort(caplog) -> None:
    await record_event(_BrokenAuditLog(), AuditEntry(tenant_id="t", actor_id="a", event_type="x", outcome="success"))

    assert "audit_event_write_failed" in caplog.text


@pytest.mark.asyncio
async def test_record_event_respects_toggle(monkeypatch) -> None:
    monkeypatch.setenv("AUDIT_ENABLED", "false")
    audit_log = InMemoryAuditLog()

    await record_event(audit_log, AuditEntry(tenant_id="t", actor_id="a", event_type="x", outcome="success"))

    assert audit_log.entries == []
