from __future__ import annotations

from typing import Iterable, Sequence

from portalsync.domain.entities import NotificationRecord
from portalsync.services.notifications.deduper import reference_token


def topic_of(title: str, keywords: Iterable[str]) -> str | None:
    lowered = title.casefold()
    for keyword in keywords:
        if keyword.casefold() in lowered:
            return keyword
    return None


def _same_event(
    kept: NotificationRecord,
    candidate: NotificationRecord,
    keywords: Sequence[str],
) -> bool:
    if kept.title == candidate.title and kept.message == candidate.message:
        return True
    topic = topic_of(candidate.title, keywords)
    if topic is None or topic != topic_of(kept.title, keywords):
        return False
    if (kept.link or "") != (candidate.link or ""):
        return False
    kept_ref = reference_token(kept.title) or reference_token(kept.message)
    candidate_ref = reference_token(candidate.title) or reference_token(candidate.message)
    return kept_ref == candidate_ref


def collapse_for_display(
    rows: Sequence[NotificationRecord],
    *,
    bucket_s: float,
    topic_keywords: Sequence[str],
) -> list[NotificationRecord]:
    """Drop historical rows that repeat a newer one within ``bucket_s`` seconds.

    This is a coarse pass over stored rows; realtime suppression happens in
    the deduper. The newest row of each collapsed group is the one kept.
    """
    ordered = sorted(rows, key=lambda row: row.created_at, reverse=True)
    kept: list[NotificationRecord] = []
    for row in ordered:
        duplicate = any(
            (earlier.created_at - row.created_at).total_seconds() <= bucket_s
            and _same_event(earlier, row, topic_keywords)
            for earlier in kept
        )
        if not duplicate:
            kept.append(row)
    return kept
