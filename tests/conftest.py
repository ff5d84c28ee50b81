"""
Shared test fixtures and fakes for lexilot-jobs tests.

This module provides:
- A controllable clock and sleep for the job monitor
- A scripted JobsClient
- A recording notification sink
- An in-memory stand-in for the redis.asyncio commands the Redis store uses
- Handler registries with simple async handlers
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from redis.exceptions import WatchError

from lexilot_jobs.client.notifications import Notification, NotificationSink
from lexilot_jobs.config import MonitorConfig
from lexilot_jobs.jobs import HandlerRegistry, InMemoryJobStore, JobStatus, JobType
from lexilot_jobs.schemas import JobView

# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Records every requested delay, advances the clock and yields once."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


class ParkedSleep:
    """Sleep that never returns on its own, leaving tasks suspended."""

    def __init__(self) -> None:
        self.delays: list[float] = []
        self._event = asyncio.Event()

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self._event.wait()


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Client side fakes
# =============================================================================


def make_view(
    job_id: str,
    status: str | JobStatus,
    job_type: str = JobType.SWISS_OBLIGATION_ANALYSIS.value,
    *,
    error: str | None = None,
    data: dict[str, Any] | None = None,
    progress: int = 0,
) -> JobView:
    return JobView(
        job_id=job_id,
        type=job_type,
        status=JobStatus(status),
        error=error,
        data=data,
        progress=progress,
    )


class ScriptedJobsClient:
    """JobsClient replaying scripted responses.

    Each script step is a JobView, None, a list of views (for listings) or an
    exception to raise. The last step of a script repeats forever.
    """

    def __init__(
        self,
        jobs: dict[str, list[Any]] | None = None,
        listings: list[Any] | None = None,
    ):
        self.jobs = {job_id: list(steps) for job_id, steps in (jobs or {}).items()}
        self.listings = list(listings or [])
        self.get_calls: list[str] = []
        self.list_calls: list[tuple[int, int]] = []

    @staticmethod
    def _next(script: list[Any], default: Any) -> Any:
        if not script:
            return default
        step = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(step, BaseException):
            raise step
        return step

    async def get_job(self, job_id: str) -> JobView | None:
        self.get_calls.append(job_id)
        return self._next(self.jobs.get(job_id, []), None)

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> list[JobView]:
        self.list_calls.append((limit, offset))
        return list(self._next(self.listings, []))


class RecordingSink(NotificationSink):
    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


# =============================================================================
# Redis fake
# =============================================================================


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the Redis job and notification stores.

    With ``network_yield`` every command suspends once before running, the
    way a round trip to a real server lets other tasks interleave.
    """

    def __init__(self, network_yield: bool = False) -> None:
        self.strings: dict[str, str] = {}
        self.zsets: dict[str, dict[str, float]] = {}
        self.versions: dict[str, int] = {}
        self.network_yield = network_yield
        self.watch_conflicts = 0
        self.closed = False

    async def _round_trip(self) -> None:
        if self.network_yield:
            await asyncio.sleep(0)

    def _touch(self, name: str) -> None:
        self.versions[name] = self.versions.get(name, 0) + 1

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def set(self, name: str, value: str, nx: bool = False) -> bool | None:
        await self._round_trip()
        return self._set(name, value, nx)

    def _set(self, name: str, value: str, nx: bool = False) -> bool | None:
        if nx and name in self.strings:
            return None
        self.strings[name] = value
        self._touch(name)
        return True

    async def get(self, name: str) -> str | None:
        await self._round_trip()
        return self.strings.get(name)

    async def mget(self, keys: list[str]) -> list[str | None]:
        await self._round_trip()
        return [self.strings.get(key) for key in keys]

    async def exists(self, *names: str) -> int:
        await self._round_trip()
        return sum(1 for name in names if name in self.strings)

    async def delete(self, *names: str) -> int:
        await self._round_trip()
        removed = 0
        for name in names:
            if self.strings.pop(name, None) is not None:
                removed += 1
            if self.zsets.pop(name, None) is not None:
                removed += 1
            self._touch(name)
        return removed

    async def zadd(self, name: str, mapping: dict[str, float]) -> int:
        await self._round_trip()
        zset = self.zsets.setdefault(name, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zrem(self, name: str, *members: str) -> int:
        await self._round_trip()
        return self._zrem(name, *members)

    def _zrem(self, name: str, *members: str) -> int:
        zset = self.zsets.get(name, {})
        return sum(1 for member in members if zset.pop(member, None) is not None)

    async def zrevrange(self, name: str, start: int, end: int) -> list[str]:
        await self._round_trip()
        items = sorted(self.zsets.get(name, {}).items(), key=lambda kv: (kv[1], kv[0]), reverse=True)
        members = [member for member, _ in items]
        if end == -1:
            return members[start:]
        return members[start:end + 1]

    async def zcard(self, name: str) -> int:
        await self._round_trip()
        return len(self.zsets.get(name, {}))

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    """WATCH/MULTI/EXEC over FakeRedis; EXEC fails if a watched key changed."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._watched: dict[str, int] = {}
        self._commands: list[tuple[str, tuple[Any, ...]]] = []

    async def __aenter__(self) -> FakePipeline:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.reset()

    async def reset(self) -> None:
        self._watched.clear()
        self._commands.clear()

    async def watch(self, *names: str) -> None:
        await self._redis._round_trip()
        for name in names:
            self._watched[name] = self._redis.versions.get(name, 0)

    async def get(self, name: str) -> str | None:
        return await self._redis.get(name)

    def multi(self) -> None:
        self._commands.clear()

    def set(self, name: str, value: str) -> FakePipeline:
        self._commands.append(("set", (name, value)))
        return self

    def zrem(self, name: str, *members: str) -> FakePipeline:
        self._commands.append(("zrem", (name, *members)))
        return self

    async def execute(self) -> list[Any]:
        await self._redis._round_trip()
        changed = any(
            self._redis.versions.get(name, 0) != version for name, version in self._watched.items()
        )
        commands = list(self._commands)
        await self.reset()
        if changed:
            self._redis.watch_conflicts += 1
            raise WatchError("Watched variable changed.")
        results = []
        for command, args in commands:
            if command == "set":
                results.append(self._redis._set(*args))
            else:
                results.append(self._redis._zrem(*args))
        return results


# =============================================================================
# Server side fixtures
# =============================================================================


async def analysis_handler(payload: dict[str, Any], report) -> dict[str, Any]:
    await report(25, "Extracting clauses")
    await report(60, "Checking obligations")
    return {"analysisId": f"analysis-{payload.get('documentId', 'x')}"}


async def generation_handler(payload: dict[str, Any], report) -> dict[str, Any]:
    await report(50, "Drafting")
    return {"contractId": "contract-1", "contractType": payload.get("contractType")}


@pytest.fixture
def registry() -> HandlerRegistry:
    registry = HandlerRegistry()
    registry.register(JobType.SWISS_OBLIGATION_ANALYSIS, analysis_handler)
    registry.register(JobType.CONTRACT_GENERATION, generation_handler)
    return registry


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def monitor_config() -> MonitorConfig:
    """Config with reconciliation gates opened so passes always run."""
    return MonitorConfig(reconcile_min_gap=0.0, reconcile_skip_window=0.0)
