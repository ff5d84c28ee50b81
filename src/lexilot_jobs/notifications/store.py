"""
Notification store interface and the in-memory implementation.

The Redis-backed store lives in ``lexilot_jobs.storage``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod

from ..errors import ErrorContext, NotFoundError
from .types import NotificationRecord


def notification_not_found(notification_id: str, owner_id: str) -> NotFoundError:
    # Same answer for missing and foreign ids
    return NotFoundError(
        "Notification not found",
        context=ErrorContext(owner_id=owner_id, extra={"notification_id": notification_id}),
    )


class NotificationStore(ABC):
    """Per-owner notification inbox, listed newest first."""

    @abstractmethod
    async def add(self, notification: NotificationRecord) -> NotificationRecord: ...

    @abstractmethod
    async def get(self, notification_id: str) -> NotificationRecord | None: ...

    @abstractmethod
    async def list(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[NotificationRecord]: ...

    @abstractmethod
    async def count(self, owner_id: str, *, unread_only: bool = False) -> int: ...

    @abstractmethod
    async def mark_read(self, notification_id: str, owner_id: str) -> NotificationRecord:
        """Flag one of the owner's notifications as read.

        Raises:
            NotFoundError: If the notification does not exist or has another owner
        """
        ...


class InMemoryNotificationStore(NotificationStore):

    def __init__(self):
        self._records: dict[str, NotificationRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, notification: NotificationRecord) -> NotificationRecord:
        async with self._lock:
            self._records[notification.notification_id] = notification
            return notification

    async def get(self, notification_id: str) -> NotificationRecord | None:
        async with self._lock:
            return self._records.get(notification_id)

    def _owned(self, owner_id: str, unread_only: bool) -> list[NotificationRecord]:
        records = [
            record for record in reversed(self._records.values())
            if record.owner_id == owner_id and not (unread_only and record.read)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    async def list(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[NotificationRecord]:
        async with self._lock:
            return self._owned(owner_id, unread_only)[offset:offset + limit]

    async def count(self, owner_id: str, *, unread_only: bool = False) -> int:
        async with self._lock:
            return len(self._owned(owner_id, unread_only))

    async def mark_read(self, notification_id: str, owner_id: str) -> NotificationRecord:
        async with self._lock:
            record = self._records.get(notification_id)
            if record is None or record.owner_id != owner_id:
                raise notification_not_found(notification_id, owner_id)
            record = record.mark_read(now=time.time())
            self._records[notification_id] = record
            return record


__all__ = [
    "NotificationStore",
    "InMemoryNotificationStore",
    "notification_not_found",
]
