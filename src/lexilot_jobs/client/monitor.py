"""
Client-side job monitor.

The JobMonitor keeps every in-flight job of one user under observation and
turns each terminal outcome into exactly one notification:
- one asyncio task per tracked job polls that job with an adaptive cadence
- a reconciliation loop merges the local view with the authoritative job list
- a set of already-notified job ids deduplicates the two paths

All state lives on the event loop that runs the monitor. Readers get
snapshot copies of tracked jobs.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..config import MonitorConfig
from ..errors import JobsError
from ..jobs.types import JobStatus
from ..logging import get_logger
from ..schemas import JobView
from .base import JobsClient
from .notifications import (
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    failure_notification,
    success_notification,
)
from .policy import PollingPolicy

logger = get_logger("lexilot_jobs.monitor")


@dataclass
class TrackedJob:
    """A job the client is currently observing."""
    job_id: str
    job_type: str
    document_id: str | None = None
    file_name: str | None = None
    start_time: float = 0.0
    poll_count: int = 0
    last_poll_time: float | None = None


class JobMonitor:
    """Observes a user's jobs until each one reaches a terminal state.

    Example:
        ```python
        async with HttpJobsClient(base_url, owner_id=user_id) as client:
            monitor = JobMonitor(client, CallbackNotificationSink(show_toast))
            await monitor.start()
            job_id = await submit_analysis()
            monitor.start_job_monitoring(job_id, "swiss-obligation-analysis", file_name="nda.pdf")
        ```

    Args:
        client: Transport used for ``get_job`` and ``list_jobs``
        sink: Receives notifications (defaults to the structured log)
        config: Timing configuration
        clock: Returns the current time in seconds
        sleep: Awaitable delay, replaceable in tests
    """

    def __init__(
        self,
        client: JobsClient,
        sink: NotificationSink | None = None,
        *,
        config: MonitorConfig | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = client
        self._sink = sink or LoggingNotificationSink()
        self._config = config or MonitorConfig()
        self._policy = PollingPolicy.from_config(self._config)
        self._clock = clock
        self._sleep = sleep

        self._jobs: dict[str, TrackedJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._notified: set[str] = set()
        self._stopped = False
        self._reconcile_task: asyncio.Task[None] | None = None
        self._last_reconcile: float | None = None

    async def __aenter__(self) -> JobMonitor:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def policy(self) -> PollingPolicy:
        return self._policy

    @property
    def tracked_jobs(self) -> list[TrackedJob]:
        return [dataclasses.replace(job) for job in self._jobs.values()]

    @property
    def has_active_jobs(self) -> bool:
        return bool(self._jobs)

    @property
    def running(self) -> bool:
        return self._reconcile_task is not None and not self._reconcile_task.done()

    def is_tracking(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def join(self) -> None:
        """Wait until no per-job task is left."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the reconciliation loop. Calling start twice is a no-op."""
        if self.running:
            return
        self._stopped = False
        self._reconcile_task = asyncio.create_task(self._reconcile_loop(), name="job-monitor-reconcile")
        logger.info("Job monitor started", reconcile_interval=self._config.reconcile_interval)

    async def stop(self) -> None:
        """Stop observing. Abandoned jobs produce no notification."""
        self._stopped = True
        tasks = list(self._tasks.values())
        if self._reconcile_task is not None:
            tasks.append(self._reconcile_task)
        abandoned = len(self._jobs)

        self._reconcile_task = None
        self._tasks.clear()
        self._jobs.clear()
        self._notified.clear()
        self._last_reconcile = None

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job monitor stopped", abandoned=abandoned)

    def start_job_monitoring(
        self,
        job_id: str,
        job_type: str,
        document_id: str | None = None,
        file_name: str | None = None,
    ) -> TrackedJob:
        """Begin polling a job right after it was enqueued.

        Returns a snapshot of the tracked entry; an already tracked job keeps
        its existing entry.
        """
        self._stopped = False
        existing = self._jobs.get(job_id)
        if existing is not None:
            return dataclasses.replace(existing)
        return dataclasses.replace(self._track(job_id, job_type, document_id, file_name))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def _reconcile_loop(self) -> None:
        while True:
            await self.reconcile()
            await self._sleep(self._policy.reconcile_interval_for(len(self._jobs)))

    async def reconcile(self) -> bool:
        """Merge tracked jobs with the authoritative job list.

        Returns False when the pass was skipped or the list could not be
        fetched.
        """
        now = self._clock()
        if self._last_reconcile is not None and now - self._last_reconcile < self._config.reconcile_min_gap:
            logger.debug("Reconciliation skipped: ran recently")
            return False
        if self._recently_polled(now):
            logger.debug("Reconciliation skipped: individual polls are active", tracked=len(self._jobs))
            return False
        self._last_reconcile = now

        try:
            listed = await self._client.list_jobs(limit=self._config.list_limit, offset=0)
        except JobsError as exc:
            logger.warning("Job list request failed", error=str(exc))
            return False

        notified_before = set(self._notified)
        listed_ids: set[str] = set()
        active_ids: set[str] = set()
        for view in listed:
            listed_ids.add(view.job_id)
            tracked = self._jobs.get(view.job_id)

            if view.status.is_terminal:
                if tracked is not None:
                    await self._finish(view.job_id, view)
                continue
            active_ids.add(view.job_id)

            if tracked is None:
                if view.job_id not in self._notified:
                    self._track(view.job_id, view.type, view.document_id, view.file_name)
                continue

            tracked.job_type = view.type
            tracked.document_id = view.document_id or tracked.document_id
            tracked.file_name = view.file_name or tracked.file_name

        for job_id, tracked in list(self._jobs.items()):
            if job_id in listed_ids:
                continue
            task = self._tasks.get(job_id)
            young = now - tracked.start_time < self._config.preservation_window
            if young and task is not None and not task.done():
                logger.debug("Preserving job not yet listed", job_id=job_id)
                continue
            self._drop(job_id)

        # Forget ids notified in an earlier window that are no longer listed as active
        self._notified -= notified_before - active_ids
        return True

    def _recently_polled(self, now: float) -> bool:
        window = self._config.reconcile_skip_window
        return any(
            job.last_poll_time is not None and now - job.last_poll_time < window
            for job in self._jobs.values()
        )

    # ------------------------------------------------------------------
    # Individual monitoring
    # ------------------------------------------------------------------

    def _track(
        self,
        job_id: str,
        job_type: str,
        document_id: str | None,
        file_name: str | None,
    ) -> TrackedJob:
        tracked = TrackedJob(
            job_id=job_id,
            job_type=job_type,
            document_id=document_id,
            file_name=file_name,
            start_time=self._clock(),
        )
        self._jobs[job_id] = tracked
        self._tasks[job_id] = asyncio.create_task(self._poll_loop(tracked), name=f"job-monitor-{job_id}")
        logger.info("Tracking job", job_id=job_id, job_type=job_type)
        return tracked

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        task = self._tasks.pop(job_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        logger.info("Stopped tracking job absent from job list", job_id=job_id)

    async def _poll_loop(self, tracked: TrackedJob) -> None:
        job_id = tracked.job_id
        processing = 0
        failures = 0
        try:
            while True:
                tracked.poll_count += 1
                tracked.last_poll_time = self._clock()
                try:
                    view = await self._client.get_job(job_id)
                except JobsError as exc:
                    failures += 1
                    delay = self._policy.failure_backoff(failures)
                    logger.warning(
                        "Job poll failed",
                        job_id=job_id, attempt=failures, retry_in=delay, error=str(exc),
                    )
                    await self._sleep(delay)
                    continue
                failures = 0

                if view is None:
                    delay = self._policy.default_interval
                elif view.status.is_terminal:
                    await self._finish(job_id, view)
                    return
                elif view.status == JobStatus.PROCESSING:
                    processing += 1
                    delay = self._policy.processing_interval(processing)
                else:
                    processing = 0
                    delay = self._policy.default_interval
                await self._sleep(delay)
        finally:
            if self._tasks.get(job_id) is asyncio.current_task():
                del self._tasks[job_id]

    async def _finish(self, job_id: str, view: JobView) -> None:
        """Untrack a terminal job and notify once per job id."""
        tracked = self._jobs.pop(job_id, None)
        # The current poll task unregisters itself when it returns
        task = self._tasks.get(job_id)
        if task is not None and task is not asyncio.current_task():
            del self._tasks[job_id]
            task.cancel()

        if job_id in self._notified:
            return
        self._notified.add(job_id)

        job_type = tracked.job_type if tracked else view.type
        file_name = (tracked.file_name if tracked else None) or view.file_name
        if view.status == JobStatus.COMPLETED:
            notification = success_notification(job_id, job_type, file_name)
        else:
            notification = failure_notification(job_id, job_type, view.error, file_name)
        logger.log_event(
            "monitor.job_finished", "Job reached a terminal state",
            job_id=job_id, job_type=job_type, status=view.status.value,
        )
        await self._notify(notification)

    async def _notify(self, notification: Notification) -> None:
        if self._stopped:
            logger.debug("Monitor stopped; notification dropped", job_id=notification.job_id)
            return
        try:
            await self._sink.notify(notification)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Notification sink failed", job_id=notification.job_id)


__all__ = ["JobMonitor", "TrackedJob"]
