"""
Tests for the aiohttp job query client against a local test server.
"""
import asyncio

import pytest
from aiohttp import test_utils, web

from lexilot_jobs.client import HttpJobsClient
from lexilot_jobs.config import ApiConfig
from lexilot_jobs.errors import NotFoundError, SchemaValidationError, TransientPollError
from lexilot_jobs.jobs import JobStatus


def _job_body(job_id: str = "j1", status: str = "processing", **extra) -> dict:
    body = {
        "success": True,
        "message": "Job status retrieved successfully",
        "jobId": job_id,
        "type": "swiss-obligation-analysis",
        "status": status,
        "progress": 40,
        "progressMessage": "Checking obligations",
        "result": None,
        "error": None,
        "createdAt": "2024-05-01T10:00:00+00:00",
        "startedAt": "2024-05-01T10:00:01+00:00",
        "completedAt": None,
    }
    body.update(extra)
    return body


async def _serve(routes: list[web.RouteDef]) -> test_utils.TestServer:
    app = web.Application()
    app.add_routes(routes)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


def _client(server: test_utils.TestServer, **kwargs) -> HttpJobsClient:
    return HttpJobsClient(str(server.make_url("/")), owner_id="user-1", **kwargs)


class TestGetJob:

    @pytest.mark.asyncio
    async def test_parses_job_and_sends_identity(self):
        seen_headers = {}

        async def handler(request: web.Request) -> web.Response:
            seen_headers.update(request.headers)
            return web.json_response(_job_body(request.match_info["job_id"]))

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                job = await client.get_job("j1")
        finally:
            await server.close()

        assert job.job_id == "j1"
        assert job.status == JobStatus.PROCESSING
        assert job.progress == 40
        assert job.progress_message == "Checking obligations"
        assert seen_headers["X-User-Id"] == "user-1"

    @pytest.mark.asyncio
    async def test_not_found(self):
        async def handler(request):
            return web.json_response({"error": "Job not found", "message": "Job not found"}, status=404)

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                with pytest.raises(NotFoundError):
                    await client.get_job("j1")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        async def handler(request):
            return web.Response(status=503, text="upstream unavailable")

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                with pytest.raises(TransientPollError) as exc_info:
                    await client.get_job("j1")
        finally:
            await server.close()

        assert exc_info.value.status == 503
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unknown_status_is_schema_error(self):
        async def handler(request):
            return web.json_response(_job_body(status="running"))

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                with pytest.raises(SchemaValidationError):
                    await client.get_job("j1")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_invalid_json_is_schema_error(self):
        async def handler(request):
            return web.Response(text="<html>oops</html>", content_type="text/html")

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                with pytest.raises(SchemaValidationError):
                    await client.get_job("j1")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_empty_body_means_no_record(self):
        async def handler(request):
            return web.json_response(None)

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server) as client:
                assert await client.get_job("j1") is None
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        async def handler(request):
            await asyncio.sleep(1)
            return web.json_response(_job_body())

        server = await _serve([web.get("/documents/jobs/{job_id}", handler)])
        try:
            async with _client(server, timeout_seconds=0.05) as client:
                with pytest.raises(TransientPollError):
                    await client.get_job("j1")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_connection_refused_is_transient(self):
        server = await _serve([])
        url = str(server.make_url("/"))
        await server.close()

        async with HttpJobsClient(url, owner_id="user-1") as client:
            with pytest.raises(TransientPollError):
                await client.get_job("j1")


class TestListJobs:

    @pytest.mark.asyncio
    async def test_parses_jobs_with_payload(self):
        seen_query = {}

        async def handler(request):
            seen_query.update(request.query)
            job = _job_body(data={"documentId": "doc-1", "fileName": "nda.pdf"})
            return web.json_response({
                "success": True,
                "message": "User jobs retrieved successfully",
                "jobs": [job],
                "pagination": {"limit": 20, "offset": 0, "total": 1, "hasMore": False},
            })

        server = await _serve([web.get("/documents/jobs", handler)])
        try:
            async with _client(server) as client:
                jobs = await client.list_jobs(limit=20, offset=0)
        finally:
            await server.close()

        assert seen_query == {"limit": "20", "offset": "0"}
        (job,) = jobs
        assert job.document_id == "doc-1"
        assert job.file_name == "nda.pdf"

    @pytest.mark.asyncio
    async def test_missing_jobs_array(self):
        async def handler(request):
            return web.json_response({"success": True})

        server = await _serve([web.get("/documents/jobs", handler)])
        try:
            async with _client(server) as client:
                with pytest.raises(SchemaValidationError):
                    await client.list_jobs()
        finally:
            await server.close()


class TestConfig:

    def test_from_config(self):
        client = HttpJobsClient.from_config(
            ApiConfig(base_url="http://api.local/", owner_header="X-Owner", request_timeout=2.5),
            owner_id="user-9",
        )
        assert client.base_url == "http://api.local"
        assert client.owner_header == "X-Owner"
        assert client.timeout_seconds == 2.5
