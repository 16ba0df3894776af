from __future__ import annotations

import asyncio
import contextlib

import pytest

from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.memory import InMemoryNotificationStore
from portalsync.services.notifications import EventDeduper, NotificationCenter, NotificationFeed, ToastSink
from portalsync.services.scope import ImpersonationScope
from portalsync.tests.utils.fakes import make_notification


def _feed(tenant_id: str = "tenant-a"):
    broadcaster = ChangeBroadcaster()
    store = InMemoryNotificationStore(broadcaster)
    scope = ImpersonationScope(operator_id="op-1", operator_tenant_id=tenant_id)
    toasts = ToastSink(ttl_s=60.0)
    center = NotificationCenter(scope=scope, store=store, toasts=toasts, limit=20)
    feed = NotificationFeed(
        scope=scope,
        store=store,
        broadcaster=broadcaster,
        deduper=EventDeduper(live_window_s=5.0, similarity_window_s=3.0, title_prefix_len=10),
        center=center,
        toasts=toasts,
    )
    feed.start()
    return feed, store, center, toasts, broadcaster, scope


@pytest.mark.asyncio
async def test_realtime_insert_reaches_center_and_toasts() -> None:
    feed, store, center, toasts, _broadcaster, _scope = _feed()

    event = await store.insert(make_notification(title="Nouveau ticket", link="tickets", severity="info"))
    admissions = await feed.process_pending()

    assert [admission.fresh for admission in admissions] == [True]
    assert center.items == [event]
    assert center.unread_count == 1
    [toast] = toasts.pending()
    assert (toast.kind, toast.title) == ("info", "Nouveau ticket")


@pytest.mark.asyncio
async def test_refetch_echo_is_a_duplicate_without_toast() -> None:
    feed, store, center, toasts, _broadcaster, _scope = _feed()
    await store.insert(make_notification(title="Nouveau ticket", link="tickets"))
    await feed.process_pending()

    await feed.refetch()
    admissions = await feed.process_pending()

    assert [admission.reason for admission in admissions] == ["identity"]
    assert len(toasts.pending()) == 1
    assert center.unread_count == 1


@pytest.mark.asyncio
async def test_optimistic_local_insert_and_its_echo_alert_once() -> None:
    feed, _store, center, toasts, _broadcaster, _scope = _feed()

    await feed.insert_local(make_notification(title="Devis accepté", link="quotes"))
    admissions = await feed.process_pending()

    assert [admission.fresh for admission in admissions] == [True, False]
    assert len(center.items) == 1
    assert len(toasts.pending()) == 1


@pytest.mark.asyncio
async def test_near_simultaneous_similar_events_alert_once_but_count_both() -> None:
    feed, store, center, toasts, _broadcaster, _scope = _feed()

    await store.insert(make_notification(title="Paiement reçu", link="invoices"))
    await store.insert(make_notification(title="Paiement reçu", link="invoices"))
    admissions = await feed.process_pending()

    assert [admission.fresh for admission in admissions] == [True, False]
    assert len(toasts.pending()) == 1
    assert len(center.items) == 1
    assert center.unread_count == 2


@pytest.mark.asyncio
async def test_other_tenant_inserts_are_not_delivered() -> None:
    feed, store, center, _toasts, _broadcaster, _scope = _feed()

    await store.insert(make_notification(tenant_id="tenant-b"))

    assert feed.backlog == 0
    assert await feed.process_pending() == []
    assert center.items == []


@pytest.mark.asyncio
async def test_restart_follows_the_new_scope() -> None:
    feed, store, _center, _toasts, broadcaster, scope = _feed()
    await store.insert(make_notification(tenant_id="tenant-a"))
    assert feed.backlog == 1

    scope.set_effective_tenant_id("tenant-b")
    feed.restart()

    assert feed.backlog == 0
    assert feed.subscribed_tenant_id == "tenant-b"
    assert broadcaster.subscriber_count(table="notifications") == 1


@pytest.mark.asyncio
async def test_run_loop_drains_the_queue() -> None:
    feed, store, center, _toasts, _broadcaster, _scope = _feed()
    task = asyncio.create_task(feed.run())
    try:
        await store.insert(make_notification(title="Projet livré", link="projects"))
        for _ in range(50):
            if center.items:
                break
            await asyncio.sleep(0.01)
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    assert [item.title for item in center.items] == ["Projet livré"]


@pytest.mark.asyncio
async def test_refetch_rebuilds_the_collapsed_list_instead_of_prepending() -> None:
    feed, store, center, toasts, _broadcaster, _scope = _feed()
    feed.stop()
    await store.insert(make_notification(title="Paiement reçu", seconds_ago=1))
    newer = await store.insert(make_notification(title="Paiement reçu"))
    await center.load()
    assert [item.id for item in center.items] == [newer.id]

    assert await feed.refetch() == 2
    await feed.process_pending()

    assert [item.id for item in center.items] == [newer.id]
    assert center.unread_count == 2
    assert toasts.pending() == []
    assert feed.reload_pending is False


@pytest.mark.asyncio
async def test_overflow_drops_backlog_and_reloads_on_next_sync() -> None:
    broadcaster = ChangeBroadcaster()
    store = InMemoryNotificationStore(broadcaster)
    scope = ImpersonationScope(operator_id="op-1", operator_tenant_id="tenant-a")
    toasts = ToastSink(ttl_s=60.0)
    center = NotificationCenter(scope=scope, store=store, toasts=toasts, limit=20)
    feed = NotificationFeed(
        scope=scope,
        store=store,
        broadcaster=broadcaster,
        deduper=EventDeduper(live_window_s=5.0, similarity_window_s=3.0, title_prefix_len=10),
        center=center,
        toasts=toasts,
        max_backlog=2,
    )
    feed.start()

    for title in ("Nouveau ticket", "Devis accepté", "Projet livré"):
        await store.insert(make_notification(title=title, link=title.split()[-1]))

    assert feed.backlog == 0
    assert feed.reload_pending is True

    await feed.process_pending()

    assert {item.title for item in center.items} == {"Nouveau ticket", "Devis accepté", "Projet livré"}
    assert center.unread_count == 3
    assert feed.reload_pending is False
