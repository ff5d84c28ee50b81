"""
Job store implementations.

This module provides the JobStore interface and the in-memory
implementation. The Redis-backed store lives in ``lexilot_jobs.storage``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..errors import ErrorContext, JobExistsError, NotFoundError
from .types import JobRecord, JobStatus


@dataclass
class JobFilter:
    """Filter criteria for listing jobs."""
    owner_id: str | None = None
    job_type: str | None = None
    status: JobStatus | set[JobStatus] | None = None
    limit: int = 20
    offset: int = 0

    def matches(self, job: JobRecord) -> bool:
        """Check if a job matches this filter."""
        if self.owner_id and job.owner_id != self.owner_id:
            return False
        if self.job_type and job.job_type != self.job_type:
            return False
        if self.status:
            if isinstance(self.status, set):
                if job.status not in self.status:
                    return False
            elif job.status != self.status:
                return False
        return True


class JobStore(ABC):
    """Abstract interface for job persistence.

    Writes are scoped to a single job record; there are no multi-job
    transactions. Listing is ordered newest first by ``created_at``.
    """

    @abstractmethod
    async def create(self, job: JobRecord) -> JobRecord:
        """Create a new job record.

        Raises:
            JobExistsError: If job_id already exists
        """
        ...

    @abstractmethod
    async def get(self, job_id: str) -> JobRecord | None:
        """Get a job by ID."""
        ...

    @abstractmethod
    async def update(self, job: JobRecord) -> JobRecord:
        """Replace an existing job record and return what was written.

        The write is resolved against the stored record atomically (see
        ``JobRecord.merged_over``): a lower progress keeps the stored value.

        Raises:
            NotFoundError: If job doesn't exist
            InvalidTransitionError: If the stored job is terminal or the
                status change is invalid
        """
        ...

    @abstractmethod
    async def claim(self, job_id: str) -> JobRecord | None:
        """Atomically move a pending job to processing.

        Returns the claimed record, or None when the job does not exist or is
        no longer pending (another execution owns it or it already finished).
        """
        ...

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        """Delete a job by ID. Returns True if deleted."""
        ...

    @abstractmethod
    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        """List jobs matching the filter, newest first."""
        ...

    @abstractmethod
    async def count(self, filter: JobFilter | None = None) -> int:
        """Count jobs matching the filter (ignores limit/offset)."""
        ...


class InMemoryJobStore(JobStore):
    """In-memory job store implementation.

    Suitable for testing and single-process deployments.
    Safe for concurrent tasks via asyncio.Lock.
    """

    def __init__(self):
        self._jobs: dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            if job.job_id in self._jobs:
                raise JobExistsError(
                    f"Job {job.job_id} already exists",
                    context=ErrorContext(job_id=job.job_id),
                )
            self._jobs[job.job_id] = job
            return job

    async def get(self, job_id: str) -> JobRecord | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def update(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            stored = self._jobs.get(job.job_id)
            if stored is None:
                raise NotFoundError(context=ErrorContext(job_id=job.job_id))
            merged = job.merged_over(stored)
            self._jobs[job.job_id] = merged
            return merged

    async def claim(self, job_id: str) -> JobRecord | None:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            claimed = job.transition_to(JobStatus.PROCESSING, now=time.time())
            self._jobs[job_id] = claimed
            return claimed

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        async with self._lock:
            # Newest insertion first so equal timestamps still list by recency
            jobs = list(reversed(self._jobs.values()))

            if filter:
                jobs = [j for j in jobs if filter.matches(j)]

            jobs.sort(key=lambda j: j.created_at, reverse=True)

            if filter:
                jobs = jobs[filter.offset:filter.offset + filter.limit]

            return jobs

    async def count(self, filter: JobFilter | None = None) -> int:
        async with self._lock:
            if filter:
                return sum(1 for j in self._jobs.values() if filter.matches(j))
            return len(self._jobs)


__all__ = [
    "JobStore",
    "InMemoryJobStore",
    "JobFilter",
]
