"""
Event system for the job queue.

This module provides the job event model and the event bus the dispatcher
publishes lifecycle changes on.
"""

from .types import JobEvent, JobEventType
from .bus import EventBus, EventSubscription, InMemoryEventBus

__all__ = [
    "JobEvent",
    "JobEventType",
    "EventBus",
    "EventSubscription",
    "InMemoryEventBus",
]
