from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Awaitable, Callable, Deque

from portalsync.core.config import get_settings
from portalsync.core.errors import NotFoundError
from portalsync.domain.entities import Severity, new_id


logger = logging.getLogger(__name__)

ToastCallback = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class ToastAction:
    label: str
    callback: ToastCallback = field(repr=False, compare=False)


@dataclass(frozen=True)
class Toast:
    id: str
    kind: Severity
    title: str
    message: str
    action: ToastAction | None = None
    created_at: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "action": self.action.label if self.action else None,
        }


class ToastSink:
    """Bounded buffer of user-visible alerts; toasts expire after ``ttl_s``."""

    def __init__(
        self,
        *,
        ttl_s: float | None = None,
        max_size: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._ttl_s = ttl_s if ttl_s is not None else settings.toast_ttl_s
        self._clock = clock
        self._max_size = max_size or settings.toast_buffer_size
        self._toasts: Deque[Toast] = deque(maxlen=self._max_size)
        # Recovery actions outlive display expiry until they are run or evicted.
        self._actions: dict[str, Toast] = {}

    def push(
        self,
        kind: Severity,
        title: str,
        message: str = "",
        *,
        action: ToastAction | None = None,
    ) -> Toast:
        toast = Toast(id=new_id(), kind=kind, title=title, message=message, action=action, created_at=self._clock())
        self._toasts.append(toast)
        if action is not None:
            self._actions[toast.id] = toast
            while len(self._actions) > self._max_size:
                self._actions.pop(next(iter(self._actions)))
        return toast

    def success(self, title: str, message: str = "") -> Toast:
        return self.push("success", title, message)

    def error(self, title: str, message: str = "", *, action: ToastAction | None = None) -> Toast:
        return self.push("error", title, message, action=action)

    def warning(self, title: str, message: str = "") -> Toast:
        return self.push("warning", title, message)

    def info(self, title: str, message: str = "") -> Toast:
        return self.push("info", title, message)

    def _expire(self) -> None:
        now = self._clock()
        while self._toasts and now - self._toasts[0].created_at > self._ttl_s:
            self._toasts.popleft()

    def pending(self) -> list[Toast]:
        self._expire()
        return list(self._toasts)

    def drain(self) -> list[Toast]:
        toasts = self.pending()
        self._toasts.clear()
        return toasts

    def clear(self) -> None:
        self._toasts.clear()
        self._actions.clear()

    async def run_action(self, toast_id: str) -> Any:
        toast = self._actions.pop(toast_id, None)
        if toast is None or toast.action is None:
            raise NotFoundError(f"toast {toast_id} has no pending action")
        if toast in self._toasts:
            self._toasts.remove(toast)
        logger.info("toast_action_run toast_id=%s label=%s", toast_id, toast.action.label)
        return await toast.action.callback()
