"""
Wire models for the job query and notification API.

Shared by the FastAPI app (responses) and the HTTP client (parsing), so a
status spelling outside ``JobStatus`` fails validation on both sides.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .jobs.types import JobRecord, JobStatus


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobView(WireModel):
    """Public status view of one job."""

    job_id: str
    type: str
    status: JobStatus
    progress: int = Field(default=0, ge=0, le=100)
    progress_message: str | None = None
    result: Any = None
    error: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def from_record(cls, job: JobRecord, *, include_payload: bool = False) -> JobView:
        return cls.model_validate(job.to_view(include_payload=include_payload))

    @property
    def document_id(self) -> str | None:
        return (self.data or {}).get("documentId")

    @property
    def file_name(self) -> str | None:
        return (self.data or {}).get("fileName")


class JobStatusResponse(JobView):
    success: bool = True
    message: str = "Job status retrieved successfully"


class Pagination(WireModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class JobListResponse(WireModel):
    success: bool = True
    message: str = "User jobs retrieved successfully"
    jobs: list[JobView]
    pagination: Pagination


class JobCreatedResponse(WireModel):
    success: bool = True
    job_id: str
    message: str


class SwissObligationAnalysisRequest(WireModel):
    file_name: str | None = None


class ContractGenerateRequest(WireModel):
    contract_type: str = Field(..., min_length=1)
    parameters: dict[str, Any] = Field(default_factory=dict)


class NotificationView(WireModel):
    """Public view of one notification."""

    id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime | None = None
    read_at: datetime | None = None


class NotificationListResponse(WireModel):
    success: bool = True
    message: str = "Notifications retrieved"
    notifications: list[NotificationView]
    pagination: Pagination


class MessageResponse(WireModel):
    success: bool = True
    message: str


class ErrorResponse(BaseModel):
    error: str
    message: str


__all__ = [
    "JobView",
    "JobStatusResponse",
    "Pagination",
    "JobListResponse",
    "JobCreatedResponse",
    "SwissObligationAnalysisRequest",
    "ContractGenerateRequest",
    "NotificationView",
    "NotificationListResponse",
    "MessageResponse",
    "ErrorResponse",
]
