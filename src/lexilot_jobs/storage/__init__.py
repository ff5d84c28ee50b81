"""
Storage backends for the job and notification stores.

- RedisJobStore: durable keyed storage with owner and pending indexes
- RedisNotificationStore: per-owner notification inbox
- create_store / create_notification_store: build the backend selected by configuration
"""

from __future__ import annotations

from ..config import StoreConfig
from ..jobs.store import InMemoryJobStore, JobStore
from ..notifications.store import InMemoryNotificationStore, NotificationStore
from .redis import RedisJobStore, RedisNotificationStore


def create_store(config: StoreConfig | None = None) -> JobStore:
    """Create the job store selected by ``config.backend``."""
    config = config or StoreConfig()
    if config.backend == "redis":
        return RedisJobStore.from_url(config.redis_url, key_prefix=config.key_prefix)
    return InMemoryJobStore()


def create_notification_store(config: StoreConfig | None = None) -> NotificationStore:
    """Create the notification store on the same backend as the job store."""
    config = config or StoreConfig()
    if config.backend == "redis":
        return RedisNotificationStore.from_url(config.redis_url, key_prefix=config.key_prefix)
    return InMemoryNotificationStore()


__all__ = [
    "RedisJobStore",
    "RedisNotificationStore",
    "create_store",
    "create_notification_store",
]
