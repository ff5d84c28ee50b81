from __future__ import annotations

from ..jobs.dispatcher import JobDispatcher
from ..schemas import JobView


class LocalJobsClient:
    """JobsClient reading straight from an in-process dispatcher.

    Useful for workers and tests that run the monitor next to the
    dispatcher without an HTTP hop.
    """

    def __init__(self, dispatcher: JobDispatcher, owner_id: str):
        self._dispatcher = dispatcher
        self.owner_id = owner_id

    async def get_job(self, job_id: str) -> JobView | None:
        job = await self._dispatcher.get_job(job_id, self.owner_id)
        return JobView.from_record(job)

    async def list_jobs(self, limit: int = 20, offset: int = 0) -> list[JobView]:
        page = await self._dispatcher.get_user_jobs(self.owner_id, limit=limit, offset=offset)
        return [JobView.from_record(job, include_payload=True) for job in page.jobs]


__all__ = ["LocalJobsClient"]
