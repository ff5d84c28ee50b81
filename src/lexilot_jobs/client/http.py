"""
HTTP transport for the job monitor.

Talks to the job query API with aiohttp and maps every failure onto the
job error hierarchy, so the monitor only ever sees ``JobsError`` subclasses.
"""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
import pydantic

from ..config import ApiConfig
from ..errors import ErrorContext, SchemaValidationError, TransientPollError, error_from_status
from ..logging import get_logger
from ..schemas import JobView

logger = get_logger("lexilot_jobs.client.http")


class HttpJobsClient:
    """JobsClient over the job query API.

    Example:
        ```python
        async with HttpJobsClient("http://localhost:8000", owner_id="user-1") as client:
            job = await client.get_job(job_id)
        ```
    """

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        *,
        owner_header: str = "X-User-Id",
        timeout_seconds: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.owner_header = owner_header
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: ApiConfig, owner_id: str) -> HttpJobsClient:
        return cls(
            config.base_url,
            owner_id,
            owner_header=config.owner_header,
            timeout_seconds=config.request_timeout,
        )

    async def __aenter__(self) -> HttpJobsClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _get_json(self, path: str, *, params: dict[str, Any] | None = None, job_id: str | None = None) -> Any:
        session = self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.get(
                url,
                params=params,
                headers={self.owner_header: self.owner_id},
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:
                if response.status >= 400:
                    message = await self._error_message(response)
                    raise error_from_status(response.status, message, job_id=job_id)
                try:
                    return await response.json(content_type=None)
                except ValueError as exc:
                    raise SchemaValidationError(
                        "Response body is not valid JSON",
                        context=ErrorContext(job_id=job_id),
                        cause=exc,
                    ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransientPollError(
                f"Request to {path} failed: {exc.__class__.__name__}",
                context=ErrorContext(job_id=job_id),
                cause=exc,
            ) from exc

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return f"HTTP {response.status}"
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or f"HTTP {response.status}")
        return f"HTTP {response.status}"

    async def get_job(self, job_id: str) -> JobView | None:
        body = await self._get_json(f"/documents/jobs/{job_id}", job_id=job_id)
        if not body:
            return None
        return _parse_view(body, job_id=job_id)

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> list[JobView]:
        body = await self._get_json("/documents/jobs", params={"limit": limit, "offset": offset})
        if not isinstance(body, dict) or not isinstance(body.get("jobs"), list):
            raise SchemaValidationError("Job list response has no jobs array")
        return [_parse_view(item) for item in body["jobs"]]


def _parse_view(data: Any, *, job_id: str | None = None) -> JobView:
    try:
        return JobView.model_validate(data)
    except pydantic.ValidationError as exc:
        logger.warning("Malformed job record", job_id=job_id, errors=exc.error_count())
        raise SchemaValidationError(
            "Job record does not match the job schema",
            context=ErrorContext(job_id=job_id),
            cause=exc,
        ) from exc


__all__ = ["HttpJobsClient"]
