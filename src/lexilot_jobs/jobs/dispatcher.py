"""
Job dispatcher: creation, execution and queries.

The JobDispatcher orchestrates the job lifecycle:
- Creating pending jobs and handing them to a bounded worker pool
- Claiming a job so exactly one execution owns it
- Running the registered handler with a write-through progress reporter
- Recording the result or the failure reason
- Owner-scoped reads for the job query API
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..config import DispatcherConfig
from ..errors import (
    ErrorContext,
    HandlerExecutionError,
    InvalidTransitionError,
    NotFoundError,
    UnknownJobTypeError,
    ValidationError,
)
from ..events import EventBus, JobEvent, JobEventType
from ..logging import get_logger, timed, truncate_for_log
from .registry import HandlerRegistry, JobType
from .store import JobFilter, JobStore
from .types import JobRecord, JobStatus

logger = get_logger("lexilot_jobs.dispatcher")

MAX_PAGE_SIZE = 100


@dataclass
class JobPage:
    """One page of a user's jobs, newest first."""
    jobs: list[JobRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total


class JobProgressReporter:
    """Write-through progress callback handed to a handler."""

    def __init__(self, dispatcher: JobDispatcher, job_id: str):
        self._dispatcher = dispatcher
        self._job_id = job_id

    async def __call__(self, percent: int, message: str = "") -> None:
        await self._dispatcher.update_progress(self._job_id, percent, message)


class JobDispatcher:
    """Creates jobs and drives each one to a terminal state.

    Execution runs on ``max_workers`` asyncio worker tasks fed by a queue,
    so a burst of ``create_job`` calls only grows the backlog, never the
    number of concurrently running handlers.
    """

    def __init__(
        self,
        store: JobStore,
        registry: HandlerRegistry,
        *,
        config: DispatcherConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self._store = store
        self._registry = registry
        self._config = config or DispatcherConfig()
        self._event_bus = event_bus
        self._queue: asyncio.Queue[str] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._owned: set[str] = set()

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def event_bus(self) -> EventBus | None:
        return self._event_bus

    @event_bus.setter
    def event_bus(self, bus: EventBus | None) -> None:
        self._event_bus = bus

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, resume_pending: bool | None = None) -> None:
        """Start the worker pool.

        Jobs left pending in the store (e.g. by a restart) are re-enqueued
        unless ``resume_pending`` is False. Calling start twice is a no-op.
        """
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"job-worker-{i}")
            for i in range(self._config.max_workers)
        ]
        logger.info("Dispatcher started", max_workers=self._config.max_workers)

        if resume_pending is None:
            resume_pending = self._config.resume_pending
        if resume_pending:
            await self._resume_pending()

    async def shutdown(self, *, drain: bool = True) -> None:
        """Stop the worker pool.

        Args:
            drain: Wait for queued jobs to finish before stopping. Without
                draining, queued jobs stay pending in the store and running
                handlers are cancelled (their jobs stay processing).
        """
        if not self._workers:
            return
        if drain and self._queue is not None:
            await self._queue.join()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Dispatcher stopped", drained=drain)

    async def join(self) -> None:
        """Wait until every queued job has been executed."""
        if self._queue is not None:
            await self._queue.join()

    async def _resume_pending(self) -> None:
        pending = await self._store.list(
            JobFilter(status=JobStatus.PENDING, limit=1_000_000)
        )
        # Oldest first so resumed jobs keep their creation order
        for job in reversed(pending):
            self._enqueue(job.job_id)
        if pending:
            logger.info("Resumed pending jobs", count=len(pending))

    def _enqueue(self, job_id: str) -> None:
        if self._queue is None:
            logger.warning(
                "Dispatcher not started; job stays pending until start()",
                job_id=job_id,
            )
            return
        self._queue.put_nowait(job_id)

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job_id = await queue.get()
            try:
                await self.execute(job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                # Store failures; handler failures are recorded by execute()
                logger.exception("Job execution crashed", job_id=job_id, worker=index)
            finally:
                queue.task_done()

    # ------------------------------------------------------------------
    # Creation and execution
    # ------------------------------------------------------------------

    async def create_job(
        self,
        job_type: str | JobType,
        owner_id: str,
        payload: Mapping[str, Any] | None = None,
    ) -> str:
        """Create a pending job and schedule it without waiting for it.

        No idempotency key is enforced: two calls create two jobs.

        Raises:
            ValidationError: If a parameter is missing or invalid
            UnknownJobTypeError: If no handler is registered for job_type
        """
        if isinstance(job_type, JobType):
            job_type = job_type.value
        if not isinstance(job_type, str) or not job_type.strip():
            raise ValidationError("job type is required")
        if not isinstance(owner_id, str) or not owner_id.strip():
            raise ValidationError("owner id is required")
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValidationError("payload must be an object")
        if job_type not in self._registry:
            raise UnknownJobTypeError(job_type, context=ErrorContext(owner_id=owner_id))

        job = JobRecord(job_type=job_type, owner_id=owner_id, payload=dict(payload))
        job = await self._store.create(job)

        logger.log_event(
            "job.created", "Job created",
            job_id=job.job_id, job_type=job_type, owner_id=owner_id,
        )
        await self._emit(job, JobEventType.JOB_CREATED)

        self._enqueue(job.job_id)
        return job.job_id

    async def execute(self, job_id: str) -> JobRecord | None:
        """Run one job to a terminal state.

        Returns the terminal record, or None when the job could not be
        claimed (missing, already owned, or no longer pending).
        """
        if job_id in self._owned:
            return None
        self._owned.add(job_id)
        try:
            return await self._execute_owned(job_id)
        finally:
            self._owned.discard(job_id)

    async def _execute_owned(self, job_id: str) -> JobRecord | None:
        pending = await self._store.get(job_id)
        if pending is None:
            logger.warning("Job vanished before execution", job_id=job_id)
            return None

        if pending.status == JobStatus.PENDING and pending.job_type not in self._registry:
            failed = pending.fail(f"Unknown job type: {pending.job_type}")
            return await self._finish(failed, JobEventType.JOB_FAILED)

        job = await self._store.claim(job_id)
        if job is None:
            logger.debug("Job already claimed", job_id=job_id)
            return None

        with logger.job_context(
            job_id=job.job_id,
            job_type=job.job_type,
            owner_id=job.owner_id,
            operation="execute",
        ):
            return await self._run_claimed(job)

    async def _run_claimed(self, job: JobRecord) -> JobRecord:
        logger.log_event("job.started", "Job started")
        await self._emit(job, JobEventType.JOB_STARTED)

        try:
            handler = self._registry.get(job.job_type)
            with timed() as timer:
                result = await handler(dict(job.payload), JobProgressReporter(self, job.job_id))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = HandlerExecutionError(
                str(exc) or exc.__class__.__name__,
                context=ErrorContext(job_id=job.job_id, job_type=job.job_type, owner_id=job.owner_id),
                cause=exc,
            )
            logger.error(
                "Handler raised",
                error=truncate_for_log(error.message),
                error_type=exc.__class__.__name__,
            )
            current = await self._current(job)
            return await self._finish(current.fail(error.message), JobEventType.JOB_FAILED)

        current = await self._current(job)
        completed = current.complete(result)
        logger.log_event("job.completed", "Job completed", duration_ms=timer.elapsed_ms)
        return await self._finish(completed, JobEventType.JOB_COMPLETED)

    async def _current(self, job: JobRecord) -> JobRecord:
        return await self._store.get(job.job_id) or job

    async def _finish(self, job: JobRecord, event_type: JobEventType) -> JobRecord:
        job = await self._store.update(job)
        if event_type == JobEventType.JOB_FAILED:
            logger.log_event("job.failed", "Job marked failed", job_id=job.job_id, error=job.error)
        # Terminal events carry what notification records link to
        await self._emit(
            job,
            event_type,
            data={"result": job.result, "document_id": job.payload.get("documentId")},
        )
        return job

    async def update_progress(self, job_id: str, percent: int, message: str = "") -> JobRecord | None:
        """Write a progress report through to the store.

        Reports for jobs that are not processing are ignored, and progress
        never decreases.
        """
        job = await self._store.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            logger.debug("Ignoring progress for inactive job", job_id=job_id)
            return None
        try:
            job = await self._store.update(job.with_progress(percent, message))
        except InvalidTransitionError:
            # Finished while the report was in flight
            logger.debug("Ignoring progress for finished job", job_id=job_id)
            return None
        logger.debug("Job progress updated", job_id=job_id, progress=job.progress, progress_message=message)
        await self._emit(job, JobEventType.JOB_PROGRESS)
        return job

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str, owner_id: str) -> JobRecord:
        """Get one job owned by owner_id.

        Raises:
            NotFoundError: If the job does not exist or has another owner
        """
        job = await self._store.get(job_id) if job_id else None
        if job is None or job.owner_id != owner_id:
            raise NotFoundError(context=ErrorContext(job_id=job_id, owner_id=owner_id))
        return job

    async def get_user_jobs(self, owner_id: str, limit: int = 20, offset: int = 0) -> JobPage:
        """List a user's jobs, newest first.

        Raises:
            ValidationError: If the pagination window is invalid
        """
        if not owner_id:
            raise ValidationError("owner id is required")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset cannot be negative")

        jobs = await self._store.list(JobFilter(owner_id=owner_id, limit=limit, offset=offset))
        total = await self._store.count(JobFilter(owner_id=owner_id))
        return JobPage(jobs=jobs, total=total, limit=limit, offset=offset)

    async def _emit(
        self,
        job: JobRecord,
        event_type: JobEventType,
        data: dict[str, Any] | None = None,
    ) -> None:
        if self._event_bus is None:
            return
        await self._event_bus.publish(JobEvent.for_job(job, event_type, data))


__all__ = [
    "JobDispatcher",
    "JobPage",
    "JobProgressReporter",
]
