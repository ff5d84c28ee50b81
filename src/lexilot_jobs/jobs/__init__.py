"""
Job system for long-running analysis tasks.

This module provides the job lifecycle management:
- JobRecord: Persisted job state
- JobDispatcher: Creation, bounded execution and owner-scoped queries
- HandlerRegistry: Job type -> handler mapping
- JobStore: Persistence interface with an in-memory implementation
"""

from .types import (
    COMPLETED_MESSAGE,
    VALID_TRANSITIONS,
    JobRecord,
    JobStatus,
)
from .registry import (
    HandlerRegistry,
    JobHandler,
    JobType,
    ProgressReporter,
)
from .store import (
    InMemoryJobStore,
    JobFilter,
    JobStore,
)
from .dispatcher import (
    JobDispatcher,
    JobPage,
)

__all__ = [
    "JobStatus",
    "JobRecord",
    "VALID_TRANSITIONS",
    "COMPLETED_MESSAGE",
    "HandlerRegistry",
    "JobHandler",
    "JobType",
    "ProgressReporter",
    "JobStore",
    "InMemoryJobStore",
    "JobFilter",
    "JobDispatcher",
    "JobPage",
]
