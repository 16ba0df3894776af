from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
import time
from typing import Callable, Literal

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portalsync.core.config import get_settings
from portalsync.core.errors import TenantScopeError
from portalsync.domain.entities import NotificationRecord
from portalsync.persistence.changes import ChangeBroadcaster
from portalsync.persistence.memory import (
    InMemoryInvoiceStore,
    InMemoryNotificationStore,
    InMemoryProfileDirectory,
    InMemorySubscriptionStore,
)
from portalsync.persistence.repos.directory import SqlInvoiceStore, SqlProfileDirectory
from portalsync.persistence.repos.notifications import SqlNotificationStore
from portalsync.persistence.repos.subscriptions import SqlSubscriptionStore
from portalsync.persistence.stores import (
    InvoiceStore,
    NotificationStore,
    ProfileDirectory,
    SubscriptionStore,
)
from portalsync.services.audit import AuditLog, InMemoryAuditLog, SqlAuditLog
from portalsync.services.deadlines import DeadlineScanner
from portalsync.services.notifications import (
    Admission,
    EventDeduper,
    NotificationCenter,
    NotificationFeed,
    ToastSink,
)
from portalsync.services.scope import ImpersonationScope
from portalsync.services.subscriptions import SubscriptionStateMachine
from portalsync.services.sync_gateway import ExternalSyncGateway


logger = logging.getLogger(__name__)

OperatorRole = Literal["admin", "client"]


@dataclass
class PortalBackend:
    # Stores shared by every session of one process, wired to one change stream.
    notifications: NotificationStore
    subscriptions: SubscriptionStore
    invoices: InvoiceStore
    profiles: ProfileDirectory
    broadcaster: ChangeBroadcaster
    audit_log: AuditLog | None = None
    # Subscription ids with a transition in flight, shared by every session.
    transition_claims: set[str] = field(default_factory=set)


def in_memory_backend() -> PortalBackend:
    broadcaster = ChangeBroadcaster()
    return PortalBackend(
        notifications=InMemoryNotificationStore(broadcaster),
        subscriptions=InMemorySubscriptionStore(broadcaster),
        invoices=InMemoryInvoiceStore(),
        profiles=InMemoryProfileDirectory(),
        broadcaster=broadcaster,
        audit_log=InMemoryAuditLog(),
    )


def sql_backend(session_factory: async_sessionmaker[AsyncSession]) -> PortalBackend:
    broadcaster = ChangeBroadcaster()
    return PortalBackend(
        notifications=SqlNotificationStore(session_factory, broadcaster),
        subscriptions=SqlSubscriptionStore(session_factory, broadcaster),
        invoices=SqlInvoiceStore(session_factory),
        profiles=SqlProfileDirectory(session_factory),
        broadcaster=broadcaster,
        audit_log=SqlAuditLog(session_factory),
    )


class PortalSession:
    """Everything one operator session needs, bound to a single scope.

    A scope switch resets the deduper and the notification center and moves
    the change-stream subscription to the new tenant; the next ``bootstrap``
    reloads the list and runs the deadline scan for that tenant.
    """

    def __init__(
        self,
        *,
        operator_id: str,
        operator_tenant_id: str | None,
        role: OperatorRole,
        backend: PortalBackend,
        gateway: ExternalSyncGateway,
        today: Callable[[], date] | None = None,
    ) -> None:
        self.role = role
        self.backend = backend
        self.scope = ImpersonationScope(operator_id=operator_id, operator_tenant_id=operator_tenant_id)
        self.toasts = ToastSink()
        self.deduper = EventDeduper()
        self.center = NotificationCenter(scope=self.scope, store=backend.notifications, toasts=self.toasts)
        self.feed = NotificationFeed(
            scope=self.scope,
            store=backend.notifications,
            broadcaster=backend.broadcaster,
            deduper=self.deduper,
            center=self.center,
            toasts=self.toasts,
        )
        self.scanner = DeadlineScanner(
            scope=self.scope,
            invoices=backend.invoices,
            notifications=backend.notifications,
            today=today,
        )
        self.subscriptions = SubscriptionStateMachine(
            scope=self.scope,
            subscriptions=backend.subscriptions,
            profiles=backend.profiles,
            gateway=gateway,
            audit_log=backend.audit_log,
            today=today,
            claims=backend.transition_claims,
        )
        self._bootstrapped_tenant_id: str | None = None
        self.scope.on_change(self._on_scope_change)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def _on_scope_change(self, previous: str | None, current: str | None) -> None:
        self.deduper.reset()
        self.center.reset()
        self.toasts.clear()
        self._bootstrapped_tenant_id = None
        if current is None:
            self.feed.stop()
        else:
            self.feed.restart()

    async def bootstrap(self) -> None:
        tenant_id = self.scope.effective_tenant_id()
        if self._bootstrapped_tenant_id == tenant_id:
            return
        if self.feed.subscribed_tenant_id != tenant_id:
            self.feed.start()
        await self.center.load()
        await self.scanner.bootstrap()
        await self.feed.process_pending()
        self._bootstrapped_tenant_id = tenant_id
        logger.info("portal_session_bootstrapped operator_id=%s tenant_id=%s", self.scope.operator_id, tenant_id)

    async def sync(self) -> list[Admission]:
        # Apply change-stream events that arrived since the last call.
        return await self.feed.process_pending()

    async def switch_tenant(self, tenant_id: str) -> None:
        if not self.is_admin and tenant_id != self.scope.operator_tenant_id:
            raise TenantScopeError("Only admins can act on behalf of another tenant")
        self.scope.set_effective_tenant_id(tenant_id)
        await self.bootstrap()

    async def reset_scope(self) -> None:
        self.scope.reset()
        if self.scope.has_tenant:
            await self.bootstrap()

    async def notify(self, record: NotificationRecord) -> NotificationRecord:
        if record.tenant_id != self.scope.effective_tenant_id():
            raise TenantScopeError("Notification targets a tenant outside the effective scope")
        stored = await self.feed.insert_local(record)
        await self.sync()
        return stored

    def close(self) -> None:
        self.feed.stop()


@dataclass
class SessionRegistry:
    backend: PortalBackend
    gateway: ExternalSyncGateway
    today: Callable[[], date] | None = None
    idle_ttl_s: float | None = None
    clock: Callable[[], float] = time.monotonic
    _sessions: dict[str, PortalSession] = field(default_factory=dict)
    _last_seen: dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._sessions)

    def expire_idle(self) -> int:
        ttl = self.idle_ttl_s if self.idle_ttl_s is not None else get_settings().session_idle_ttl_s
        cutoff = self.clock() - ttl
        expired = [operator_id for operator_id, seen in self._last_seen.items() if seen < cutoff]
        for operator_id in expired:
            # Closing drops the change-stream subscription and its backlog.
            self._sessions.pop(operator_id).close()
            del self._last_seen[operator_id]
        if expired:
            logger.info("portal_sessions_expired count=%s", len(expired))
        return len(expired)

    async def get_or_create(
        self,
        *,
        operator_id: str,
        operator_tenant_id: str | None,
        role: OperatorRole,
    ) -> PortalSession:
        self.expire_idle()
        session = self._sessions.get(operator_id)
        if session is None:
            session = PortalSession(
                operator_id=operator_id,
                operator_tenant_id=operator_tenant_id,
                role=role,
                backend=self.backend,
                gateway=self.gateway,
                today=self.today,
            )
            self._sessions[operator_id] = session
        self._last_seen[operator_id] = self.clock()
        if session.scope.has_tenant:
            await session.bootstrap()
        return session

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()
        self._last_seen.clear()
