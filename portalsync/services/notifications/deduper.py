from __future__ import annotations

from dataclasses import dataclass
import logging
import re
import time
from typing import Callable, Literal

from portalsync.core.config import get_settings
from portalsync.domain.entities import NotificationRecord
from portalsync.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

SignatureFn = Callable[[NotificationRecord, int], str]

# Tokens of three or more characters that contain a digit, e.g. invoice numbers like F-2024-001.
_REFERENCE_TOKEN = re.compile(r"(?<![\w-])(?=[\w-]*\d)[\w-]{3,}")


def reference_token(text: str) -> str | None:
    match = _REFERENCE_TOKEN.search(text or "")
    return match.group(0) if match else None


def title_prefix_signature(event: NotificationRecord, prefix_len: int) -> str:
    return f"{event.link or 'nolink'}-{event.title[:prefix_len]}"


def content_signature(event: NotificationRecord, prefix_len: int) -> str:
    # Title prefixes alone merge "Facture payée : F-1" with "Facture payée : F-2".
    base = title_prefix_signature(event, prefix_len)
    token = reference_token(event.title) or reference_token(event.message)
    if token is None:
        return base
    return f"{base}-{token}"


@dataclass(frozen=True)
class Admission:
    event: NotificationRecord
    duplicate_of: NotificationRecord | None = None
    reason: Literal["identity", "similar"] | None = None

    @property
    def fresh(self) -> bool:
        return self.duplicate_of is None


@dataclass(frozen=True)
class _LogEntry:
    event: NotificationRecord
    signature: str
    admitted_at: float


class EventDeduper:
    """Decides whether an incoming notification event was already seen.

    Every producer (realtime push, re-fetch, optimistic insert) goes through
    the same instance. Entries older than the live window are pruned on each
    admission; an id match against any retained entry, or a signature match
    within the similarity window, marks the event as a duplicate. Duplicates
    are not logged, so they never extend a window.
    """

    def __init__(
        self,
        *,
        signature: SignatureFn = content_signature,
        live_window_s: float | None = None,
        similarity_window_s: float | None = None,
        title_prefix_len: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = get_settings()
        self._signature = signature
        self._live_window_s = live_window_s if live_window_s is not None else settings.dedupe_live_window_s
        self._similarity_window_s = (
            similarity_window_s if similarity_window_s is not None else settings.dedupe_similarity_window_s
        )
        self._prefix_len = title_prefix_len if title_prefix_len is not None else settings.dedupe_title_prefix_len
        self._clock = clock
        self._log: list[_LogEntry] = []

    def __len__(self) -> int:
        return len(self._log)

    def admit(self, event: NotificationRecord, *, now: float | None = None) -> Admission:
        now = self._clock() if now is None else now
        self._log = [entry for entry in self._log if now - entry.admitted_at <= self._live_window_s]

        for entry in self._log:
            if entry.event.id == event.id:
                return self._duplicate(event, entry, "identity")

        signature = self._signature(event, self._prefix_len)
        for entry in reversed(self._log):
            if entry.signature == signature and now - entry.admitted_at <= self._similarity_window_s:
                return self._duplicate(event, entry, "similar")

        self._log.append(_LogEntry(event=event, signature=signature, admitted_at=now))
        return Admission(event=event)

    def reset(self) -> None:
        self._log.clear()

    def _duplicate(self, event: NotificationRecord, entry: _LogEntry, reason: str) -> Admission:
        increment_counter("notification_duplicates_total")
        logger.debug(
            "notification_duplicate_suppressed id=%s duplicate_of=%s reason=%s",
            event.id,
            entry.event.id,
            reason,
        )
        return Admission(event=event, duplicate_of=entry.event, reason=reason)  # type: ignore[arg-type]
