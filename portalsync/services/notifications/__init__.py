from portalsync.services.notifications.center import NotificationCenter
from portalsync.services.notifications.deduper import (
    Admission,
    EventDeduper,
    content_signature,
    title_prefix_signature,
)
from portalsync.services.notifications.feed import NotificationFeed
from portalsync.services.notifications.toasts import Toast, ToastAction, ToastSink

__all__ = [
    "Admission",
    "EventDeduper",
    "NotificationCenter",
    "NotificationFeed",
    "Toast",
    "ToastAction",
    "ToastSink",
    "content_signature",
    "title_prefix_signature",
]
