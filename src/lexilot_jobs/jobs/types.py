"""
Job types for the analysis job queue.

This module defines the JobStatus enum and JobRecord dataclass
that form the core of the job lifecycle system.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import ErrorContext, InvalidTransitionError, SchemaValidationError


class JobStatus(str, Enum):
    """Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (a worker claimed the job)
    - PENDING -> FAILED (no handler for the job type)
    - PROCESSING -> COMPLETED (handler returned)
    - PROCESSING -> FAILED (handler raised)
    """
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in {JobStatus.COMPLETED, JobStatus.FAILED}

    @property
    def is_active(self) -> bool:
        """Check if the job is still active."""
        return self in {JobStatus.PENDING, JobStatus.PROCESSING}

    @classmethod
    def parse(cls, value: Any) -> JobStatus:
        """Parse a status, rejecting any spelling outside the enum."""
        if isinstance(value, JobStatus):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            raise SchemaValidationError(f"Unknown job status: {value!r}", cause=exc) from exc


# Valid state transitions
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    # Terminal states have no valid transitions
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

COMPLETED_MESSAGE = "Analysis completed successfully"


@dataclass(frozen=True)
class JobRecord:
    """Persistent record of a job.

    Records are immutable values; every lifecycle change produces a new
    record that the store writes in place of the old one.
    """
    # Identity
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_type: str = ""
    owner_id: str = ""

    # Status
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    progress_message: str = ""

    # Opaque blobs
    payload: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None

    # Timestamps (epoch seconds)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None

    schema_version: int = 1

    def can_transition_to(self, new_status: JobStatus) -> bool:
        """Check if transition to new_status is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: JobStatus, *, now: float | None = None) -> JobRecord:
        """Create a new JobRecord with updated status and timestamps.

        Raises:
            InvalidTransitionError: If the transition is invalid
        """
        if not self.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Invalid transition: {self.status.value} -> {new_status.value}",
                context=ErrorContext(job_id=self.job_id, job_type=self.job_type),
            )

        now = time.time() if now is None else now
        updates: dict[str, Any] = {"status": new_status, "updated_at": now}

        if new_status == JobStatus.PROCESSING and self.started_at is None:
            updates["started_at"] = now

        if new_status.is_terminal:
            updates["completed_at"] = now

        return replace(self, **updates)

    def with_progress(self, progress: int, message: str | None = None) -> JobRecord:
        """Create a new JobRecord with updated progress.

        Progress is clamped to 0-100 and never moves backwards.
        """
        clamped = max(0, min(100, int(progress)))
        return replace(
            self,
            progress=max(self.progress, clamped),
            progress_message=self.progress_message if message is None else message,
            updated_at=time.time(),
        )

    def merged_over(self, stored: JobRecord) -> JobRecord:
        """Resolve a write of this record against the one currently stored.

        Stores call this at write time, so a write prepared from a stale read
        can neither reopen a terminal job nor move progress backwards.

        Raises:
            InvalidTransitionError: If the stored job is terminal or the
                status change is not a valid transition
        """
        if stored.status.is_terminal:
            raise InvalidTransitionError(
                f"Job is already {stored.status.value}",
                context=ErrorContext(job_id=stored.job_id, job_type=stored.job_type),
            )
        if self.status != stored.status and not stored.can_transition_to(self.status):
            raise InvalidTransitionError(
                f"Invalid transition: {stored.status.value} -> {self.status.value}",
                context=ErrorContext(job_id=stored.job_id, job_type=stored.job_type),
            )
        if self.status == JobStatus.PROCESSING and self.progress < stored.progress:
            return replace(
                self,
                progress=stored.progress,
                progress_message=stored.progress_message,
            )
        return self

    def complete(self, result: Any) -> JobRecord:
        """Transition to COMPLETED with the handler's result."""
        job = self.transition_to(JobStatus.COMPLETED)
        return replace(
            job,
            result=result,
            progress=100,
            progress_message=COMPLETED_MESSAGE,
        )

    def fail(self, error: str) -> JobRecord:
        """Transition to FAILED with a human-readable reason."""
        job = self.transition_to(JobStatus.FAILED)
        return replace(job, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "job_id": self.job_id,
            "job_type": self.job_type,
            "owner_id": self.owner_id,
            "status": self.status.value,
            "progress": self.progress,
            "progress_message": self.progress_message,
            "payload": dict(self.payload),
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobRecord:
        """Deserialize from dictionary.

        Raises:
            SchemaValidationError: If required fields are missing or the
                status is not part of the vocabulary
        """
        missing = [k for k in ("job_id", "job_type", "owner_id", "status") if k not in data]
        if missing:
            raise SchemaValidationError(f"Job record is missing fields: {', '.join(missing)}")
        return cls(
            job_id=data["job_id"],
            job_type=data["job_type"],
            owner_id=data["owner_id"],
            status=JobStatus.parse(data["status"]),
            progress=int(data.get("progress") or 0),
            progress_message=data.get("progress_message") or "",
            payload=dict(data.get("payload") or {}),
            result=data.get("result"),
            error=data.get("error"),
            created_at=data.get("created_at", time.time()),
            updated_at=data.get("updated_at", time.time()),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            schema_version=data.get("schema_version", 1),
        )

    def to_view(self, *, include_payload: bool = False) -> dict[str, Any]:
        """Render the public status view served by the job query API."""
        view: dict[str, Any] = {
            "jobId": self.job_id,
            "type": self.job_type,
            "status": self.status.value,
            "progress": self.progress,
            "progressMessage": self.progress_message,
            "result": self.result,
            "error": self.error,
            "createdAt": _isoformat(self.created_at),
            "startedAt": _isoformat(self.started_at),
            "completedAt": _isoformat(self.completed_at),
        }
        if include_payload:
            view["data"] = dict(self.payload)
        return view


def _isoformat(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


__all__ = [
    "JobStatus",
    "JobRecord",
    "VALID_TRANSITIONS",
    "COMPLETED_MESSAGE",
]
