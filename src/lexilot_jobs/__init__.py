"""
Top-level package for lexilot-jobs: an async job queue for long-running
document analyses plus the client that watches those jobs to completion.

The FastAPI app lives in ``lexilot_jobs.api`` and is imported on demand.
"""

from .config import Settings, configure, get_settings, load_env
from .errors import (
    ErrorCode,
    HandlerExecutionError,
    InvalidTransitionError,
    JobsError,
    NotFoundError,
    SchemaValidationError,
    TransientPollError,
    UnknownJobTypeError,
    ValidationError,
)
from .events import InMemoryEventBus, JobEvent, JobEventType
from .jobs import (
    HandlerRegistry,
    InMemoryJobStore,
    JobDispatcher,
    JobPage,
    JobRecord,
    JobStatus,
    JobType,
)
from .client import (
    CallbackNotificationSink,
    HttpJobsClient,
    JobMonitor,
    LocalJobsClient,
    Notification,
    TrackedJob,
)
from .notifications import (
    InMemoryNotificationStore,
    NotificationRecord,
    NotificationRecorder,
    NotificationType,
)
from .logging import configure_logging, get_logger

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "configure",
    "get_settings",
    "load_env",
    "ErrorCode",
    "JobsError",
    "ValidationError",
    "SchemaValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "HandlerExecutionError",
    "UnknownJobTypeError",
    "TransientPollError",
    "InMemoryEventBus",
    "JobEvent",
    "JobEventType",
    "HandlerRegistry",
    "InMemoryJobStore",
    "JobDispatcher",
    "JobPage",
    "JobRecord",
    "JobStatus",
    "JobType",
    "JobMonitor",
    "TrackedJob",
    "HttpJobsClient",
    "LocalJobsClient",
    "Notification",
    "CallbackNotificationSink",
    "NotificationRecord",
    "NotificationType",
    "InMemoryNotificationStore",
    "NotificationRecorder",
    "configure_logging",
    "get_logger",
]
