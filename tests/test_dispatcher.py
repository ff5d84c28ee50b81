"""
Tests for the job dispatcher: creation, bounded execution and queries.
"""
import asyncio
import json
import logging

import pytest

from conftest import FakeRedis
from lexilot_jobs.config import DispatcherConfig
from lexilot_jobs.errors import NotFoundError, UnknownJobTypeError, ValidationError
from lexilot_jobs.events import InMemoryEventBus, JobEventType
from lexilot_jobs.jobs import (
    COMPLETED_MESSAGE,
    HandlerRegistry,
    JobDispatcher,
    JobFilter,
    JobRecord,
    JobStatus,
    JobType,
)
from lexilot_jobs.logging import get_logger
from lexilot_jobs.storage import RedisJobStore


class TestCreateAndExecute:
    """End-to-end lifecycle through the worker pool."""

    @pytest.mark.asyncio
    async def test_swiss_obligation_analysis_completes(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        await dispatcher.start()

        job_id = await dispatcher.create_job(
            JobType.SWISS_OBLIGATION_ANALYSIS,
            "user-1",
            {"documentId": "doc-1", "fileName": "nda.pdf"},
        )
        await dispatcher.join()
        await dispatcher.shutdown()

        job = await dispatcher.get_job(job_id, "user-1")
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.progress_message == COMPLETED_MESSAGE
        assert job.result == {"analysisId": "analysis-doc-1"}
        assert job.error is None
        assert job.started_at is not None
        assert job.completed_at >= job.started_at

    @pytest.mark.asyncio
    async def test_create_returns_before_execution(self, store, registry):
        """A job is pending right after creation and runs later."""
        dispatcher = JobDispatcher(store, registry)
        await dispatcher.start()

        job_id = await dispatcher.create_job("contract-generation", "user-1", {"contractType": "nda"})
        assert (await store.get(job_id)).status == JobStatus.PENDING

        await dispatcher.join()
        await dispatcher.shutdown()
        assert (await store.get(job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_two_calls_create_two_jobs(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        first = await dispatcher.create_job("contract-generation", "user-1", {"contractType": "nda"})
        second = await dispatcher.create_job("contract-generation", "user-1", {"contractType": "nda"})
        assert first != second
        assert await store.count(JobFilter(owner_id="user-1")) == 2

    @pytest.mark.asyncio
    async def test_handler_failure_is_recorded(self, store, registry):
        async def broken(payload, report):
            await report(10, "Starting")
            raise RuntimeError("LLM provider unavailable")

        registry.register(JobType.CONTRACT_ANALYSIS, broken)
        dispatcher = JobDispatcher(store, registry)
        await dispatcher.start()

        failed_id = await dispatcher.create_job(JobType.CONTRACT_ANALYSIS, "user-1", {})
        ok_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1", {"documentId": "d"})
        await dispatcher.join()
        await dispatcher.shutdown()

        failed = await store.get(failed_id)
        assert failed.status == JobStatus.FAILED
        assert failed.error == "LLM provider unavailable"
        assert failed.result is None
        assert failed.completed_at is not None
        assert (await store.get(ok_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_type_at_execution_fails_job(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        job = await store.create(JobRecord(job_type="mystery", owner_id="user-1"))

        result = await dispatcher.execute(job.job_id)

        assert result.status == JobStatus.FAILED
        assert result.error == "Unknown job type: mystery"
        assert result.started_at is None

    @pytest.mark.asyncio
    async def test_execute_runs_once(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1", {})

        first = await dispatcher.execute(job_id)
        second = await dispatcher.execute(job_id)

        assert first.status == JobStatus.COMPLETED
        assert second is None

    @pytest.mark.asyncio
    async def test_concurrent_execute_has_single_owner(self, store):
        calls = 0
        release = asyncio.Event()

        async def slow(payload, report):
            nonlocal calls
            calls += 1
            await release.wait()
            return "done"

        registry = HandlerRegistry().register("slow", slow)
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job("slow", "user-1")

        first = asyncio.create_task(dispatcher.execute(job_id))
        await asyncio.sleep(0)
        assert await dispatcher.execute(job_id) is None
        release.set()
        await first

        assert calls == 1


class TestValidation:
    """Invalid requests are rejected before anything is written."""

    @pytest.mark.asyncio
    async def test_unknown_type_rejected_at_creation(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        with pytest.raises(UnknownJobTypeError):
            await dispatcher.create_job("mystery", "user-1", {})
        assert await store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "job_type,owner,payload",
        [
            ("", "user-1", {}),
            ("contract-generation", "", {}),
            ("contract-generation", "user-1", ["not", "a", "mapping"]),
        ],
    )
    async def test_invalid_parameters(self, store, registry, job_type, owner, payload):
        dispatcher = JobDispatcher(store, registry)
        with pytest.raises(ValidationError):
            await dispatcher.create_job(job_type, owner, payload)
        assert await store.count() == 0


class TestWorkerPool:
    """Bounded concurrency and restart recovery."""

    @pytest.mark.asyncio
    async def test_pool_bounds_concurrent_handlers(self, store):
        active = 0
        peak = 0

        async def tracked(payload, report):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return payload["n"]

        registry = HandlerRegistry().register("tracked", tracked)
        dispatcher = JobDispatcher(store, registry, config=DispatcherConfig(max_workers=2))
        await dispatcher.start()

        ids = [await dispatcher.create_job("tracked", "user-1", {"n": n}) for n in range(6)]
        await dispatcher.join()
        await dispatcher.shutdown()

        assert peak == 2
        for job_id in ids:
            assert (await store.get(job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pending_jobs_resume_on_start(self, store, registry):
        leftover = await store.create(
            JobRecord(job_type="swiss-obligation-analysis", owner_id="user-1", payload={"documentId": "d"})
        )
        dispatcher = JobDispatcher(store, registry)

        await dispatcher.start()
        await dispatcher.join()
        await dispatcher.shutdown()

        assert (await store.get(leftover.job_id)).status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_resume_can_be_disabled(self, store, registry):
        leftover = await store.create(JobRecord(job_type="swiss-obligation-analysis", owner_id="user-1"))
        dispatcher = JobDispatcher(store, registry)

        await dispatcher.start(resume_pending=False)
        await dispatcher.join()
        await dispatcher.shutdown()

        assert (await store.get(leftover.job_id)).status == JobStatus.PENDING

    @pytest.mark.asyncio
    async def test_jobs_created_before_start_stay_pending(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1")
        assert (await store.get(job_id)).status == JobStatus.PENDING
        assert not dispatcher.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, store, registry):
        dispatcher = JobDispatcher(store, registry, config=DispatcherConfig(max_workers=3))
        await dispatcher.start()
        await dispatcher.start()
        assert len(dispatcher._workers) == 3
        await dispatcher.shutdown()
        assert not dispatcher.running

    @pytest.mark.asyncio
    async def test_runs_on_redis_store(self, registry):
        store = RedisJobStore(FakeRedis())
        dispatcher = JobDispatcher(store, registry)
        await dispatcher.start()

        job_id = await dispatcher.create_job(JobType.CONTRACT_GENERATION, "user-1", {"contractType": "nda"})
        await dispatcher.join()
        await dispatcher.shutdown()

        job = await dispatcher.get_job(job_id, "user-1")
        assert job.status == JobStatus.COMPLETED
        assert job.result == {"contractId": "contract-1", "contractType": "nda"}


class TestProgress:
    """Progress reports are written through and never move backwards."""

    @pytest.mark.asyncio
    async def test_progress_written_through(self, store):
        seen = []

        async def reporting(payload, report):
            await report(50, "Halfway")
            seen.append(await store.get(payload["self"]))
            await report(30, "Late report")
            seen.append(await store.get(payload["self"]))
            return None

        registry = HandlerRegistry().register("reporting", reporting)
        dispatcher = JobDispatcher(store, registry)
        job = await store.create(
            JobRecord(job_id="job-1", job_type="reporting", owner_id="user-1", payload={"self": "job-1"})
        )

        await dispatcher.execute(job.job_id)

        assert [s.progress for s in seen] == [50, 50]
        assert seen[0].progress_message == "Halfway"

    @pytest.mark.asyncio
    async def test_progress_ignored_for_terminal_jobs(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1")
        await dispatcher.execute(job_id)

        assert await dispatcher.update_progress(job_id, 10, "too late") is None
        job = await store.get(job_id)
        assert job.progress == 100
        assert job.status == JobStatus.COMPLETED


    @pytest.mark.asyncio
    async def test_report_landing_after_completion_is_ignored(self):
        store = RedisJobStore(FakeRedis(network_yield=True))
        in_flight = []

        async def fire_and_forget(payload, report):
            in_flight.append(asyncio.create_task(report(70, "Late")))
            return {"analysisId": "a1"}

        registry = HandlerRegistry().register("fire-and-forget", fire_and_forget)
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job("fire-and-forget", "user-1")

        await dispatcher.execute(job_id)
        await asyncio.gather(*in_flight)

        job = await store.get(job_id)
        assert job.status == JobStatus.COMPLETED
        assert job.progress == 100
        assert job.result == {"analysisId": "a1"}

    @pytest.mark.asyncio
    async def test_concurrent_reports_keep_highest_progress(self):
        store = RedisJobStore(FakeRedis(network_yield=True))
        seen = []

        async def racing(payload, report):
            await asyncio.gather(report(50, "Halfway"), report(40, "Older"))
            seen.append(await store.get(payload["self"]))
            return None

        registry = HandlerRegistry().register("racing", racing)
        dispatcher = JobDispatcher(store, registry)
        await store.create(
            JobRecord(job_id="job-1", job_type="racing", owner_id="user-1", payload={"self": "job-1"})
        )

        await dispatcher.execute("job-1")

        assert seen[0].progress == 50
        assert (await store.get("job-1")).status == JobStatus.COMPLETED


class TestQueries:
    """Owner-scoped reads."""

    @pytest.mark.asyncio
    async def test_foreign_and_missing_jobs_look_the_same(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1")

        with pytest.raises(NotFoundError) as foreign:
            await dispatcher.get_job(job_id, "user-2")
        with pytest.raises(NotFoundError) as missing:
            await dispatcher.get_job("no-such-job", "user-2")

        assert foreign.value.message == missing.value.message

    @pytest.mark.asyncio
    async def test_user_jobs_paginate_newest_first(self, store, registry):
        dispatcher = JobDispatcher(store, registry)
        ids = []
        for i in range(5):
            job = await store.create(
                JobRecord(job_type="contract-generation", owner_id="user-1", created_at=100.0 + i)
            )
            ids.append(job.job_id)
        await store.create(JobRecord(job_type="contract-generation", owner_id="user-2"))

        first = await dispatcher.get_user_jobs("user-1", limit=2, offset=0)
        boundary = await dispatcher.get_user_jobs("user-1", limit=2, offset=3)
        last = await dispatcher.get_user_jobs("user-1", limit=2, offset=4)

        assert [j.job_id for j in first.jobs] == [ids[4], ids[3]]
        assert first.total == 5
        assert first.has_more is True
        assert boundary.has_more is False
        assert [j.job_id for j in last.jobs] == [ids[0]]
        assert last.has_more is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit,offset", [(0, 0), (101, 0), (20, -1)])
    async def test_invalid_pagination(self, store, registry, limit, offset):
        dispatcher = JobDispatcher(store, registry)
        with pytest.raises(ValidationError):
            await dispatcher.get_user_jobs("user-1", limit=limit, offset=offset)


class TestEvents:
    """Lifecycle changes are published on the event bus."""

    @pytest.mark.asyncio
    async def test_lifecycle_events(self, store, registry):
        bus = InMemoryEventBus()
        subscription = bus.subscribe()
        dispatcher = JobDispatcher(store, registry, event_bus=bus)

        job_id = await dispatcher.create_job(JobType.SWISS_OBLIGATION_ANALYSIS, "user-1", {"documentId": "d"})
        await dispatcher.execute(job_id)

        stream = bus.events(subscription)
        bus.unsubscribe(subscription)
        events = [event async for event in stream]

        assert {event.job_id for event in events} == {job_id}
        types = [event.type for event in events]

        assert types == [
            JobEventType.JOB_CREATED,
            JobEventType.JOB_STARTED,
            JobEventType.JOB_PROGRESS,
            JobEventType.JOB_PROGRESS,
            JobEventType.JOB_COMPLETED,
        ]
        assert events[-1].data["result"] == {"analysisId": "analysis-d"}
        assert events[-1].data["document_id"] == "d"
        await bus.close()


class TestLogContext:
    """Records written while a job runs carry the job's identity."""

    @pytest.mark.asyncio
    async def test_handler_logs_carry_job_fields(self, store, caplog):
        handler_logger = get_logger("lexilot_jobs.test.handler")

        async def logging_handler(payload, report):
            handler_logger.info("Handler step")
            return {"ok": True}

        registry = HandlerRegistry()
        registry.register(JobType.CONTRACT_GENERATION, logging_handler)
        dispatcher = JobDispatcher(store, registry)
        job_id = await dispatcher.create_job(JobType.CONTRACT_GENERATION, "user-1")

        with caplog.at_level(logging.INFO, logger="lexilot_jobs"):
            await dispatcher.execute(job_id)
            handler_logger.info("After job")

        records = {
            data["message"]: data
            for data in (json.loads(r.getMessage()) for r in caplog.records if r.name.startswith("lexilot_jobs"))
        }
        step = records["Handler step"]
        assert step["job_id"] == job_id
        assert step["owner_id"] == "user-1"
        assert step["job_type"] == "contract-generation"
        assert step["operation"] == "execute"
        assert records["Job completed"]["job_id"] == job_id
        assert "job_id" not in records["After job"]
