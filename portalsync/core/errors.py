from __future__ import annotations


class PortalSyncError(Exception):
    """Base error for portalsync."""


class InvalidTransition(PortalSyncError):
    """Requested subscription status is not reachable from the current one."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot transition subscription from {current} to {target}")
        self.current = current
        self.target = target


class TenantScopeError(PortalSyncError):
    """Operation targets a tenant other than the effective scope, or no scope is set."""


class NotFoundError(PortalSyncError):
    """Requested row does not exist within the effective tenant."""


class ExternalReferenceConflict(PortalSyncError):
    """An external reference is already recorded and differs from the new one."""


class StoreError(PortalSyncError):
    """The data store rejected a read or write."""


class LocalWriteFailure(PortalSyncError):
    """A local write failed after (or without) an external dispatch."""

    def __init__(self, message: str, *, dispatched: bool = False) -> None:
        super().__init__(message)
        # Dispatched intents are never rolled back; callers can surface the gap.
        self.dispatched = dispatched


class StatusConflict(PortalSyncError):
    """The stored status no longer matches the one the transition was validated against."""

    def __init__(self, subscription_id: str, expected: str, current: str) -> None:
        super().__init__(f"subscription {subscription_id} is {current}, expected {expected}")
        self.expected = expected
        self.current = current


class TransitionInProgress(PortalSyncError):
    """Another transition of the same subscription has not completed yet."""
