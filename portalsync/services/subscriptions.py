from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Callable

from portalsync.core.config import get_settings
from portalsync.core.errors import (
    ExternalReferenceConflict,
    InvalidTransition,
    LocalWriteFailure,
    NotFoundError,
    StatusConflict,
    StoreError,
    TenantScopeError,
    TransitionInProgress,
)
from portalsync.domain.entities import (
    BILLING_CYCLES,
    SUBSCRIPTION_STATUSES,
    SubscriptionRecord,
    TenantProfile,
    new_id,
    utc_today,
)
from portalsync.persistence.stores import ProfileDirectory, SubscriptionStore
from portalsync.services.audit import AuditEntry, AuditLog, record_event
from portalsync.services.scope import ImpersonationScope
from portalsync.services.sync_gateway import (
    DispatchIntent,
    ExternalSyncGateway,
    SyncMode,
    build_sync_payload,
)


logger = logging.getLogger(__name__)

# cancelled is terminal; same-status requests are not transitions.
ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        ("pending", "active"),
        ("paused", "active"),
        ("active", "paused"),
        ("active", "cancelled"),
        ("paused", "cancelled"),
    }
)


def is_allowed_transition(current: str, target: str) -> bool:
    return (current, target) in ALLOWED_TRANSITIONS


def resolve_sync_mode(subscription: SubscriptionRecord, target_status: str) -> SyncMode:
    # Only an activation without an upstream object needs provisioning.
    if target_status == "active" and subscription.external_reference_id is None:
        return "create"
    return "update"


def add_billing_cycle(start: date, billing_cycle: str) -> date:
    months = 1 if billing_cycle == "monthly" else 12
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


@dataclass(frozen=True)
class TransitionResult:
    subscription: SubscriptionRecord
    mode: SyncMode
    intent: DispatchIntent


class SubscriptionStateMachine:
    """Validates status changes and syncs them to the billing workflow.

    The intent is dispatched before the local write. The dispatch outcome is
    never observed, so a failed local write leaves an acknowledged gap: the
    workflow may act on a status the store does not hold yet. Callers see a
    ``LocalWriteFailure`` with ``dispatched=True`` in that case.

    Validation reads the stored row and the local write is conditional on
    the status that was validated. A second transition of the same
    subscription while one is in flight is refused before dispatch.
    """

    def __init__(
        self,
        *,
        scope: ImpersonationScope,
        subscriptions: SubscriptionStore,
        profiles: ProfileDirectory,
        gateway: ExternalSyncGateway,
        audit_log: AuditLog | None = None,
        today: Callable[[], date] | None = None,
        claims: set[str] | None = None,
    ) -> None:
        self._scope = scope
        self._subscriptions = subscriptions
        self._profiles = profiles
        self._gateway = gateway
        self._audit_log = audit_log
        self._today = today or utc_today
        # Subscription ids with a transition between validation and local write; share one set per process.
        self._claims = claims if claims is not None else set()

    def _require_in_scope(self, subscription: SubscriptionRecord) -> str:
        tenant_id = self._scope.effective_tenant_id()
        if subscription.tenant_id != tenant_id:
            raise TenantScopeError(
                f"subscription {subscription.id} does not belong to the effective tenant"
            )
        return tenant_id

    async def list_subscriptions(self) -> list[SubscriptionRecord]:
        return await self._subscriptions.list_for_tenant(self._scope.effective_tenant_id())

    async def get_subscription(self, subscription_id: str) -> SubscriptionRecord:
        row = await self._subscriptions.get(self._scope.effective_tenant_id(), subscription_id)
        if row is None:
            raise NotFoundError(f"subscription {subscription_id} not found")
        return row

    async def create_subscription(
        self,
        *,
        service_name: str,
        amount: Decimal,
        billing_cycle: str,
        currency: str | None = None,
        tax_rate: Decimal = Decimal("0"),
        next_billing_date: date | None = None,
    ) -> SubscriptionRecord:
        if billing_cycle not in BILLING_CYCLES:
            raise ValueError(f"unsupported billing cycle: {billing_cycle}")
        tenant_id = self._scope.effective_tenant_id()
        record = SubscriptionRecord(
            id=new_id(),
            tenant_id=tenant_id,
            service_name=service_name,
            amount=amount,
            billing_cycle=billing_cycle,  # type: ignore[arg-type]
            status="pending",
            currency=currency or get_settings().default_currency,
            tax_rate=tax_rate,
            next_billing_date=next_billing_date or add_billing_cycle(self._today(), billing_cycle),
        )
        created = await self._subscriptions.create(record)
        logger.info("subscription_created subscription_id=%s tenant_id=%s", created.id, tenant_id)
        return created

    async def request_transition(
        self,
        subscription: SubscriptionRecord,
        target_status: str,
    ) -> TransitionResult:
        tenant_id = self._require_in_scope(subscription)
        if subscription.id in self._claims:
            raise TransitionInProgress(f"subscription {subscription.id} has a transition in progress")
        self._claims.add(subscription.id)
        try:
            return await self._transition(tenant_id, subscription.id, target_status)
        finally:
            self._claims.discard(subscription.id)

    async def _transition(self, tenant_id: str, subscription_id: str, target_status: str) -> TransitionResult:
        profile = await self._profiles.get_profile(tenant_id) or TenantProfile(tenant_id=tenant_id)
        # Validate against the stored row, not the caller's copy; nothing awaits between here and dispatch.
        current = await self._subscriptions.get(tenant_id, subscription_id)
        if current is None:
            raise NotFoundError(f"subscription {subscription_id} not found")
        if target_status not in SUBSCRIPTION_STATUSES or not is_allowed_transition(current.status, target_status):
            raise InvalidTransition(current.status, target_status)

        mode = resolve_sync_mode(current, target_status)
        payload = build_sync_payload(
            mode=mode,
            target_status=target_status,
            subscription=current,
            profile=profile,
        )
        intent = self._gateway.dispatch(payload)

        start_date = self._today() if current.status == "pending" and target_status == "active" else None
        try:
            updated = await self._subscriptions.update_status(
                tenant_id,
                subscription_id,
                status=target_status,
                start_date=start_date,
                expected_status=current.status,
            )
        except (StoreError, NotFoundError, StatusConflict) as exc:
            logger.error(
                "subscription_local_write_failed subscription_id=%s target_status=%s intent_id=%s",
                subscription_id,
                target_status,
                intent.id,
                exc_info=exc,
            )
            await self._audit(current, target_status, mode, intent, outcome="failure", error_code="LOCAL_WRITE_FAILED")
            raise LocalWriteFailure(
                f"subscription {subscription_id} status write failed after dispatch",
                dispatched=intent.scheduled,
            ) from exc

        logger.info(
            "subscription_transitioned subscription_id=%s from=%s to=%s mode=%s",
            subscription_id,
            current.status,
            target_status,
            mode,
        )
        await self._audit(current, target_status, mode, intent, outcome="success")
        return TransitionResult(subscription=updated, mode=mode, intent=intent)

    async def record_external_reference(self, subscription_id: str, external_reference_id: str) -> SubscriptionRecord:
        if not external_reference_id:
            raise ValueError("external reference id must be non-empty")
        current = await self.get_subscription(subscription_id)
        if current.external_reference_id is not None:
            if current.external_reference_id == external_reference_id:
                return current
            raise ExternalReferenceConflict(
                f"subscription {subscription_id} already references {current.external_reference_id}"
            )
        updated = await self._subscriptions.set_external_reference(
            current.tenant_id, subscription_id, external_reference_id
        )
        logger.info("subscription_reference_recorded subscription_id=%s", subscription_id)
        return updated

    async def delete_subscription(self, subscription_id: str) -> None:
        deleted = await self._subscriptions.delete(self._scope.effective_tenant_id(), subscription_id)
        if not deleted:
            raise NotFoundError(f"subscription {subscription_id} not found")
        logger.info("subscription_deleted subscription_id=%s", subscription_id)

    async def _audit(
        self,
        subscription: SubscriptionRecord,
        target_status: str,
        mode: SyncMode,
        intent: DispatchIntent,
        *,
        outcome: str,
        error_code: str | None = None,
    ) -> None:
        await record_event(
            self._audit_log,
            AuditEntry(
                tenant_id=subscription.tenant_id,
                actor_id=self._scope.operator_id,
                event_type="subscription.transition",
                outcome=outcome,
                resource_type="subscription",
                resource_id=subscription.id,
                metadata={
                    "from": subscription.status,
                    "to": target_status,
                    "mode": mode,
                    "intent_id": intent.id,
                    "dispatched": intent.scheduled,
                },
                error_code=error_code,
            ),
        )
