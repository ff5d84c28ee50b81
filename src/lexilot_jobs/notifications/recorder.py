"""
Event bus subscriber that persists a notification for every finished job.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from ..events import EventBus, EventSubscription, JobEvent, JobEventType
from ..logging import get_logger
from .store import NotificationStore
from .types import NotificationRecord, record_for_event

logger = get_logger("lexilot_jobs.notifications")

TERMINAL_EVENTS = {JobEventType.JOB_COMPLETED, JobEventType.JOB_FAILED}


class NotificationRecorder:
    """Writes a NotificationRecord for each completed or failed job event.

    Example:
        ```python
        recorder = NotificationRecorder(bus, InMemoryNotificationStore())
        await recorder.start()
        ...
        await recorder.stop()  # records events already queued, then returns
        ```
    """

    def __init__(self, bus: EventBus, store: NotificationStore):
        self._bus = bus
        self._store = store
        self._subscription: EventSubscription | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def store(self) -> NotificationStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._task is not None

    async def start(self) -> None:
        if self._task is not None:
            return
        self._subscription = self._bus.subscribe(event_types=set(TERMINAL_EVENTS))
        stream = self._bus.events(self._subscription)
        self._task = asyncio.create_task(self._consume(stream), name="notification-recorder")
        logger.info("Notification recorder started")

    async def stop(self) -> None:
        if self._task is None or self._subscription is None:
            return
        self._bus.unsubscribe(self._subscription)
        await self._task
        self._task = None
        self._subscription = None
        logger.info("Notification recorder stopped")

    async def _consume(self, stream: AsyncIterator[JobEvent]) -> None:
        async for event in stream:
            await self.record(event)

    async def record(self, event: JobEvent) -> NotificationRecord | None:
        """Persist the notification for one event.

        Store failures are logged and skipped so one bad write does not end
        the subscription.
        """
        notification = record_for_event(event)
        if notification is None:
            logger.debug("Event carries no notification", event_type=event.type.value, job_id=event.job_id)
            return None
        try:
            await self._store.add(notification)
        except Exception:
            logger.exception("Failed to record job notification", job_id=event.job_id)
            return None
        logger.log_event(
            "notification.recorded",
            notification.title,
            job_id=event.job_id,
            owner_id=notification.owner_id,
            notification_type=notification.type.value,
        )
        return notification


__all__ = ["NotificationRecorder", "TERMINAL_EVENTS"]
