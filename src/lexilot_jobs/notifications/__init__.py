"""
Server-side notifications: one record per finished job, kept per owner.

- NotificationRecord: the persisted notification and its German texts
- NotificationStore: per-owner inbox (in-memory here, Redis in ``storage``)
- NotificationRecorder: event bus subscriber writing records for terminal jobs
"""

from .types import (
    NotificationRecord,
    NotificationType,
    completion_record,
    failure_record,
    record_for_event,
)
from .store import InMemoryNotificationStore, NotificationStore
from .recorder import NotificationRecorder

__all__ = [
    "NotificationRecord",
    "NotificationType",
    "completion_record",
    "failure_record",
    "record_for_event",
    "NotificationStore",
    "InMemoryNotificationStore",
    "NotificationRecorder",
]
