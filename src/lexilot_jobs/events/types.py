"""
Job event types.

Every lifecycle change the dispatcher writes to the job store is also
published as a JobEvent so in-process observers (audit logs, server-side
notifications, tests) can follow execution without polling the store.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobEventType(str, Enum):
    """Event type categories for job events."""

    JOB_CREATED = "job.created"
    JOB_STARTED = "job.started"
    JOB_PROGRESS = "job.progress"
    JOB_COMPLETED = "job.completed"
    JOB_FAILED = "job.failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobEventType.JOB_COMPLETED, JobEventType.JOB_FAILED}


@dataclass
class JobEvent:
    """Lifecycle event for one job.

    Terminal events carry the job result (completed) or error (failed) in
    ``data`` alongside the status snapshot.
    """
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    type: JobEventType = JobEventType.JOB_PROGRESS
    timestamp: float = field(default_factory=time.time)

    job_id: str | None = None
    job_type: str | None = None
    owner_id: str | None = None

    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_job(cls, job: Any, type: JobEventType, data: dict[str, Any] | None = None) -> JobEvent:
        """Create an event from a JobRecord."""
        return cls(
            type=type,
            job_id=job.job_id,
            job_type=job.job_type,
            owner_id=job.owner_id,
            data={
                "status": job.status.value,
                "progress": job.progress,
                "progress_message": job.progress_message,
                "error": job.error,
                **(data or {}),
            },
        )


__all__ = [
    "JobEvent",
    "JobEventType",
]
