"""
Client side of the job system.

- JobMonitor: observes a user's jobs and notifies once per terminal outcome
- HttpJobsClient / LocalJobsClient: transports the monitor polls through
- PollingPolicy: adaptive poll, backoff and reconciliation delays
- Notification sinks: where terminal outcomes are delivered
"""

from .base import JobsClient
from .http import HttpJobsClient
from .local import LocalJobsClient
from .monitor import JobMonitor, TrackedJob
from .notifications import (
    CallbackNotificationSink,
    LoggingNotificationSink,
    Notification,
    NotificationAction,
    NotificationKind,
    NotificationSink,
    failure_notification,
    success_notification,
)
from .policy import PollingPolicy

__all__ = [
    "JobsClient",
    "HttpJobsClient",
    "LocalJobsClient",
    "JobMonitor",
    "TrackedJob",
    "PollingPolicy",
    "Notification",
    "NotificationAction",
    "NotificationKind",
    "NotificationSink",
    "LoggingNotificationSink",
    "CallbackNotificationSink",
    "success_notification",
    "failure_notification",
]
