from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from portalsync.domain.entities import ChangeEvent, ChangeOp


logger = logging.getLogger(__name__)

ChangeHandler = Callable[[ChangeEvent], None]


@dataclass(frozen=True)
class _Subscription:
    table: str
    tenant_id: str
    ops: frozenset[str]
    handler: ChangeHandler


class ChangeBroadcaster:
    """In-process change stream scoped by table, tenant filter and operation.

    Stores publish after a successful commit; subscribers receive events
    synchronously in commit order and must not block (the notification feed
    only enqueues).
    """

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    def subscribe(
        self,
        *,
        table: str,
        tenant_id: str,
        handler: ChangeHandler,
        ops: Iterable[ChangeOp] = ("INSERT",),
    ) -> Callable[[], None]:
        subscription = _Subscription(table=table, tenant_id=tenant_id, ops=frozenset(ops), handler=handler)
        self._subscriptions.append(subscription)

        def _unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return _unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.table != event.table:
                continue
            if subscription.tenant_id != event.tenant_id:
                continue
            if event.op not in subscription.ops:
                continue
            try:
                subscription.handler(event)
            except Exception as exc:  # noqa: BLE001 - one bad subscriber must not starve the others
                logger.warning(
                    "change_handler_failed table=%s op=%s tenant_id=%s",
                    event.table,
                    event.op,
                    event.tenant_id,
                    exc_info=exc,
                )

    def subscriber_count(self, *, table: str | None = None) -> int:
        if table is None:
            return len(self._subscriptions)
        return sum(1 for item in self._subscriptions if item.table == table)
