"""
Redis-backed job and notification stores.

Layout (all keys under ``key_prefix``):
- ``{prefix}:job:{job_id}``     JSON-encoded JobRecord
- ``{prefix}:owner:{owner_id}`` sorted set of job ids, scored by created_at
- ``{prefix}:all``              sorted set of every job id
- ``{prefix}:pending``          sorted set of ids still pending
- ``{prefix}:claim:{job_id}``   ownership marker written with SET NX

The claim marker makes ``claim`` safe across processes sharing one Redis:
only the first SET NX wins the job. Record rewrites run under WATCH/MULTI so
a write prepared from a stale read never lands on a finished job.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable

import redis.asyncio as redis
from redis.exceptions import WatchError

from ..errors import ErrorContext, JobExistsError, NotFoundError, SchemaValidationError
from ..jobs.store import JobFilter, JobStore
from ..jobs.types import JobRecord, JobStatus
from ..logging import get_logger
from ..notifications.store import NotificationStore, notification_not_found
from ..notifications.types import NotificationRecord

logger = get_logger("lexilot_jobs.storage.redis")


class RedisJobStore(JobStore):
    """Job store on top of redis.asyncio.

    Example:
        ```python
        store = RedisJobStore.from_url("redis://localhost:6379/0")
        dispatcher = JobDispatcher(store, registry)
        ```
    """

    def __init__(self, client: Any, *, key_prefix: str = "lexilot:jobs"):
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "lexilot:jobs") -> RedisJobStore:
        return cls(redis.from_url(url, decode_responses=True), key_prefix=key_prefix)

    async def close(self) -> None:
        await self._redis.aclose()

    # Keys

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:owner:{owner_id}"

    def _claim_key(self, job_id: str) -> str:
        return f"{self._prefix}:claim:{job_id}"

    @property
    def _all_key(self) -> str:
        return f"{self._prefix}:all"

    @property
    def _pending_key(self) -> str:
        return f"{self._prefix}:pending"

    # Encoding

    @staticmethod
    def _encode(job: JobRecord) -> str:
        return json.dumps(job.to_dict(), default=str)

    @staticmethod
    def _decode(raw: str | bytes) -> JobRecord:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SchemaValidationError("Stored job is not valid JSON", cause=exc) from exc
        return JobRecord.from_dict(data)

    # JobStore

    async def create(self, job: JobRecord) -> JobRecord:
        created = await self._redis.set(self._job_key(job.job_id), self._encode(job), nx=True)
        if not created:
            raise JobExistsError(
                f"Job {job.job_id} already exists",
                context=ErrorContext(job_id=job.job_id),
            )
        await self._redis.zadd(self._owner_key(job.owner_id), {job.job_id: job.created_at})
        await self._redis.zadd(self._all_key, {job.job_id: job.created_at})
        if job.status == JobStatus.PENDING:
            await self._redis.zadd(self._pending_key, {job.job_id: job.created_at})
        return job

    async def get(self, job_id: str) -> JobRecord | None:
        raw = await self._redis.get(self._job_key(job_id))
        if raw is None:
            return None
        return self._decode(raw)

    async def update(self, job: JobRecord) -> JobRecord:
        written = await self._write_watched(job.job_id, job.merged_over)
        if written is None:
            raise NotFoundError(context=ErrorContext(job_id=job.job_id))
        return written

    async def claim(self, job_id: str) -> JobRecord | None:
        acquired = await self._redis.set(self._claim_key(job_id), str(time.time()), nx=True)
        if not acquired:
            return None

        def to_processing(stored: JobRecord) -> JobRecord | None:
            if stored.status != JobStatus.PENDING:
                return None
            return stored.transition_to(JobStatus.PROCESSING)

        return await self._write_watched(job_id, to_processing)

    async def _write_watched(
        self,
        job_id: str,
        resolve: Callable[[JobRecord], JobRecord | None],
    ) -> JobRecord | None:
        """Read-modify-write one record under WATCH/MULTI.

        ``resolve`` maps the stored record to the one to write, or None to
        leave it untouched. The transaction is retried when another writer
        changed the record in between. Returns None for a missing job.
        """
        key = self._job_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if raw is None:
                        return None
                    record = resolve(self._decode(raw))
                    if record is None:
                        return None
                    pipe.multi()
                    pipe.set(key, self._encode(record))
                    if record.status != JobStatus.PENDING:
                        pipe.zrem(self._pending_key, job_id)
                    await pipe.execute()
                    return record
                except WatchError:
                    logger.debug("Job changed during write; retrying", job_id=job_id)
                    continue

    async def delete(self, job_id: str) -> bool:
        job = await self.get(job_id)
        if job is None:
            return False
        await self._redis.delete(self._job_key(job_id), self._claim_key(job_id))
        await self._redis.zrem(self._owner_key(job.owner_id), job_id)
        await self._redis.zrem(self._all_key, job_id)
        await self._redis.zrem(self._pending_key, job_id)
        return True

    async def list(self, filter: JobFilter | None = None) -> list[JobRecord]:
        filter = filter or JobFilter(limit=1_000_000)
        index = self._index_for(filter)

        if self._index_is_exact(filter):
            ids = await self._redis.zrevrange(index, filter.offset, filter.offset + filter.limit - 1)
            return await self._load(ids)

        ids = await self._redis.zrevrange(index, 0, -1)
        jobs = [job for job in await self._load(ids) if filter.matches(job)]
        return jobs[filter.offset:filter.offset + filter.limit]

    async def count(self, filter: JobFilter | None = None) -> int:
        filter = filter or JobFilter()
        index = self._index_for(filter)
        if self._index_is_exact(filter):
            return await self._redis.zcard(index)
        ids = await self._redis.zrevrange(index, 0, -1)
        return sum(1 for job in await self._load(ids) if filter.matches(job))

    def _index_for(self, filter: JobFilter) -> str:
        if filter.owner_id:
            return self._owner_key(filter.owner_id)
        if filter.status == JobStatus.PENDING:
            return self._pending_key
        return self._all_key

    @staticmethod
    def _index_is_exact(filter: JobFilter) -> bool:
        """True when the chosen sorted set alone answers the filter."""
        if filter.job_type:
            return False
        if filter.owner_id:
            return filter.status is None
        return filter.status is None or filter.status == JobStatus.PENDING

    async def _load(self, ids: list[str]) -> list[JobRecord]:
        if not ids:
            return []
        raws = await self._redis.mget([self._job_key(job_id) for job_id in ids])
        jobs: list[JobRecord] = []
        for job_id, raw in zip(ids, raws):
            if raw is None:
                logger.warning("Index references a missing job", job_id=job_id)
                continue
            jobs.append(self._decode(raw))
        return jobs


class RedisNotificationStore(NotificationStore):
    """Notification inbox on top of redis.asyncio.

    Layout (under ``key_prefix``):
    - ``{prefix}:notification:{id}``       JSON-encoded NotificationRecord
    - ``{prefix}:notifications:{owner_id}`` sorted set of ids, scored by created_at
    """

    def __init__(self, client: Any, *, key_prefix: str = "lexilot:jobs"):
        self._redis = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, *, key_prefix: str = "lexilot:jobs") -> RedisNotificationStore:
        return cls(redis.from_url(url, decode_responses=True), key_prefix=key_prefix)

    async def close(self) -> None:
        await self._redis.aclose()

    def _key(self, notification_id: str) -> str:
        return f"{self._prefix}:notification:{notification_id}"

    def _owner_key(self, owner_id: str) -> str:
        return f"{self._prefix}:notifications:{owner_id}"

    @staticmethod
    def _decode(raw: str | bytes) -> NotificationRecord:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise SchemaValidationError("Stored notification is not valid JSON", cause=exc) from exc
        return NotificationRecord.from_dict(data)

    async def add(self, notification: NotificationRecord) -> NotificationRecord:
        encoded = json.dumps(notification.to_dict(), default=str)
        await self._redis.set(self._key(notification.notification_id), encoded)
        await self._redis.zadd(
            self._owner_key(notification.owner_id),
            {notification.notification_id: notification.created_at},
        )
        return notification

    async def get(self, notification_id: str) -> NotificationRecord | None:
        raw = await self._redis.get(self._key(notification_id))
        if raw is None:
            return None
        return self._decode(raw)

    async def list(
        self,
        owner_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = False,
    ) -> list[NotificationRecord]:
        if not unread_only:
            ids = await self._redis.zrevrange(self._owner_key(owner_id), offset, offset + limit - 1)
            return await self._load(ids)
        unread = [n for n in await self._load_all(owner_id) if not n.read]
        return unread[offset:offset + limit]

    async def count(self, owner_id: str, *, unread_only: bool = False) -> int:
        if not unread_only:
            return await self._redis.zcard(self._owner_key(owner_id))
        return sum(1 for n in await self._load_all(owner_id) if not n.read)

    async def mark_read(self, notification_id: str, owner_id: str) -> NotificationRecord:
        record = await self.get(notification_id)
        if record is None or record.owner_id != owner_id:
            raise notification_not_found(notification_id, owner_id)
        record = record.mark_read(now=time.time())
        await self._redis.set(self._key(notification_id), json.dumps(record.to_dict(), default=str))
        return record

    async def _load_all(self, owner_id: str) -> list[NotificationRecord]:
        return await self._load(await self._redis.zrevrange(self._owner_key(owner_id), 0, -1))

    async def _load(self, ids: list[str]) -> list[NotificationRecord]:
        if not ids:
            return []
        raws = await self._redis.mget([self._key(notification_id) for notification_id in ids])
        return [self._decode(raw) for raw in raws if raw is not None]


__all__ = ["RedisJobStore", "RedisNotificationStore"]
