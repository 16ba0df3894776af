from __future__ import annotations

import pytest

from portalsync.core.errors import NotFoundError
from portalsync.services.notifications.toasts import ToastAction, ToastSink


def test_toasts_expire_after_ttl() -> None:
    now = {"t": 0.0}
    sink = ToastSink(ttl_s=5.0, max_size=10, clock=lambda: now["t"])
    sink.success("Paiement reçu")
    now["t"] = 3.0
    sink.warning("Échéance proche (1j) : F-1")

    now["t"] = 6.0
    assert [toast.title for toast in sink.pending()] == ["Échéance proche (1j) : F-1"]
    now["t"] = 9.0
    assert sink.drain() == []


@pytest.mark.asyncio
async def test_actions_stay_runnable_after_drain() -> None:
    calls: list[str] = []

    async def _retry() -> None:
        calls.append("retry")

    sink = ToastSink(ttl_s=5.0, max_size=10)
    toast = sink.error("Erreur", "Suppression impossible", action=ToastAction("Réessayer", _retry))
    [drained] = sink.drain()
    assert drained.to_dict()["action"] == "Réessayer"

    await sink.run_action(toast.id)

    assert calls == ["retry"]
    with pytest.raises(NotFoundError):
        await sink.run_action(toast.id)
