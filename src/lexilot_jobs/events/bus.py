"""
Event bus for job lifecycle events.

The dispatcher publishes one JobEvent per state change. Subscribers filter
by job, owner and event type, and read from a bounded per-subscription
queue that drops its oldest entry when a slow reader falls behind.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator

from .types import JobEvent, JobEventType


@dataclass
class EventSubscription:
    """Filter describing which job events a subscriber receives."""
    subscription_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    job_id: str | None = None
    owner_id: str | None = None
    event_types: set[JobEventType] | None = None  # None = all types

    def matches(self, event: JobEvent) -> bool:
        return (
            (not self.job_id or event.job_id == self.job_id)
            and (not self.owner_id or event.owner_id == self.owner_id)
            and (not self.event_types or event.type in self.event_types)
        )


class EventBus(ABC):
    """Publish/subscribe channel for job events."""

    @abstractmethod
    async def publish(self, event: JobEvent) -> None: ...

    @abstractmethod
    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[JobEventType] | None = None,
        owner_id: str | None = None,
    ) -> EventSubscription: ...

    @abstractmethod
    def events(self, subscription: EventSubscription) -> AsyncIterator[JobEvent]:
        """Yield events for a subscription until it is removed."""

    @abstractmethod
    def unsubscribe(self, subscription: EventSubscription) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...


class _Mailbox:
    """Bounded queue of one subscriber; ``None`` marks the end of the stream."""

    def __init__(self, max_size: int):
        self.queue: asyncio.Queue[JobEvent | None] = asyncio.Queue(maxsize=max_size)

    def put(self, item: JobEvent | None) -> None:
        if self.queue.full():
            self.queue.get_nowait()
        self.queue.put_nowait(item)


class InMemoryEventBus(EventBus):
    """Single-process event bus.

    Args:
        max_queue_size: Events buffered per subscription before the oldest
            one is dropped
    """

    def __init__(self, max_queue_size: int = 1000):
        if max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")
        self._max_queue_size = max_queue_size
        self._subscriptions: dict[str, tuple[EventSubscription, _Mailbox]] = {}
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: JobEvent) -> None:
        if self._closed:
            return
        for subscription, mailbox in list(self._subscriptions.values()):
            if subscription.matches(event):
                mailbox.put(event)

    def subscribe(
        self,
        job_id: str | None = None,
        event_types: set[JobEventType] | None = None,
        owner_id: str | None = None,
    ) -> EventSubscription:
        subscription = EventSubscription(job_id=job_id, owner_id=owner_id, event_types=event_types)
        self._subscriptions[subscription.subscription_id] = (
            subscription,
            _Mailbox(self._max_queue_size),
        )
        return subscription

    def events(self, subscription: EventSubscription) -> AsyncIterator[JobEvent]:
        # Binds the mailbox eagerly; the stream ends on unsubscribe or close
        entry = self._subscriptions.get(subscription.subscription_id)
        return _drain(entry[1].queue if entry is not None else None)

    def unsubscribe(self, subscription: EventSubscription) -> None:
        entry = self._subscriptions.pop(subscription.subscription_id, None)
        if entry is not None:
            entry[1].put(None)

    async def close(self) -> None:
        self._closed = True
        entries = list(self._subscriptions.values())
        self._subscriptions.clear()
        for _, mailbox in entries:
            mailbox.put(None)


async def _drain(queue: asyncio.Queue[JobEvent | None] | None) -> AsyncIterator[JobEvent]:
    if queue is None:
        return
    while (event := await queue.get()) is not None:
        yield event


__all__ = [
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
]
