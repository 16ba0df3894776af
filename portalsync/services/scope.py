from __future__ import annotations

import logging
from typing import Callable

from portalsync.core.errors import TenantScopeError


logger = logging.getLogger(__name__)

ScopeListener = Callable[[str | None, str | None], None]


class ImpersonationScope:
    """The tenant every tenant-scoped operation resolves at call time.

    An operator starts on their own tenant; an admin may switch the effective
    tenant to act on behalf of a client. Components never cache the value, so a
    switch retargets every subsequent read and write. Switching emits no
    external dispatch; listeners only reset in-memory session state.
    """

    def __init__(self, *, operator_id: str, operator_tenant_id: str | None) -> None:
        self._operator_id = operator_id
        self._operator_tenant_id = operator_tenant_id
        self._effective_tenant_id = operator_tenant_id
        self._listeners: list[ScopeListener] = []

    @property
    def operator_id(self) -> str:
        return self._operator_id

    @property
    def operator_tenant_id(self) -> str | None:
        return self._operator_tenant_id

    @property
    def is_impersonating(self) -> bool:
        return (
            self._effective_tenant_id is not None
            and self._effective_tenant_id != self._operator_tenant_id
        )

    @property
    def has_tenant(self) -> bool:
        return bool(self._effective_tenant_id)

    def effective_tenant_id(self) -> str:
        if not self._effective_tenant_id:
            raise TenantScopeError("No effective tenant is set for this session")
        return self._effective_tenant_id

    def set_effective_tenant_id(self, tenant_id: str | None) -> None:
        previous = self._effective_tenant_id
        self._effective_tenant_id = tenant_id or None
        if previous == self._effective_tenant_id:
            return
        logger.info(
            "scope_changed operator_id=%s previous=%s current=%s",
            self._operator_id,
            previous,
            self._effective_tenant_id,
        )
        for listener in list(self._listeners):
            listener(previous, self._effective_tenant_id)

    def reset(self) -> None:
        self.set_effective_tenant_id(self._operator_tenant_id)

    def on_change(self, listener: ScopeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove
