from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..schemas import JobView


@runtime_checkable
class JobsClient(Protocol):
    """Read access to the caller's jobs, as used by the job monitor.

    ``get_job`` returns None when the server answered without a record.
    Transport failures raise ``TransientPollError``; an unknown id raises
    ``NotFoundError``; a malformed record raises ``SchemaValidationError``.
    """

    async def get_job(self, job_id: str) -> JobView | None: ...

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> list[JobView]: ...
