"""
Server-side notification records.

One record is written per terminal job, addressed to the job's owner and
read back through the notification API. Texts follow the product's German UI.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import SchemaValidationError
from ..events import JobEvent, JobEventType
from ..jobs.registry import JobType


class NotificationType(str, Enum):
    """What a notification reports."""
    ANALYSIS_COMPLETED = "analysis_completed"
    CONTRACT_GENERATED = "contract_generated"
    JOB_COMPLETED = "job_completed"
    ANALYSIS_FAILED = "analysis_failed"
    CONTRACT_GENERATION_FAILED = "contract_generation_failed"
    JOB_FAILED = "job_failed"


@dataclass(frozen=True)
class NotificationRecord:
    owner_id: str
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    notification_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    read: bool = False
    created_at: float = field(default_factory=time.time)
    read_at: float | None = None

    def mark_read(self, *, now: float | None = None) -> NotificationRecord:
        """Return the record flagged as read. Already-read records keep their read_at."""
        if self.read:
            return self
        return replace(self, read=True, read_at=time.time() if now is None else now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "owner_id": self.owner_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data),
            "read": self.read,
            "created_at": self.created_at,
            "read_at": self.read_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationRecord:
        try:
            return cls(
                notification_id=data["notification_id"],
                owner_id=data["owner_id"],
                type=NotificationType(data["type"]),
                title=data.get("title") or "",
                message=data.get("message") or "",
                data=dict(data.get("data") or {}),
                read=bool(data.get("read", False)),
                created_at=data.get("created_at", time.time()),
                read_at=data.get("read_at"),
            )
        except (KeyError, ValueError) as exc:
            raise SchemaValidationError(f"Invalid notification record: {exc}", cause=exc) from exc

    def to_view(self) -> dict[str, Any]:
        """Render the public view served by the notification API."""
        return {
            "id": self.notification_id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "data": dict(self.data),
            "read": self.read,
            "createdAt": _isoformat(self.created_at),
            "readAt": _isoformat(self.read_at),
        }


def _isoformat(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _present(**fields: Any) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def completion_record(
    job_id: str,
    job_type: str,
    owner_id: str,
    result: Any = None,
    document_id: str | None = None,
) -> NotificationRecord:
    """Build the record written when a job completes.

    Result fields the UI links to (analysisId, downloadUrl, ...) are copied
    into ``data`` when the handler returned them.
    """
    outcome = result if isinstance(result, Mapping) else {}
    document_id = outcome.get("documentId") or document_id

    if job_type == JobType.SWISS_OBLIGATION_ANALYSIS.value:
        return NotificationRecord(
            owner_id=owner_id,
            type=NotificationType.ANALYSIS_COMPLETED,
            title="Analyse abgeschlossen",
            message="Die Schweizer Obligationenrecht-Analyse wurde erfolgreich abgeschlossen.",
            data=_present(
                jobId=job_id,
                analysisId=outcome.get("analysisId"),
                documentId=document_id,
            ),
        )
    if job_type == JobType.CONTRACT_GENERATION.value:
        return NotificationRecord(
            owner_id=owner_id,
            type=NotificationType.CONTRACT_GENERATED,
            title="Vertrag generiert",
            message="Die Vertragsgenerierung wurde erfolgreich abgeschlossen.",
            data=_present(
                jobId=job_id,
                downloadUrl=outcome.get("downloadUrl"),
                documentId=document_id,
                contractType=outcome.get("contractType"),
            ),
        )
    return NotificationRecord(
        owner_id=owner_id,
        type=NotificationType.JOB_COMPLETED,
        title="Auftrag abgeschlossen",
        message="Der Auftrag wurde erfolgreich abgeschlossen.",
        data={"jobId": job_id},
    )


def failure_record(job_id: str, job_type: str, owner_id: str, error: str | None) -> NotificationRecord:
    """Build the record written when a job fails."""
    error = error or "Unbekannter Fehler"
    if job_type == JobType.SWISS_OBLIGATION_ANALYSIS.value:
        notification_type = NotificationType.ANALYSIS_FAILED
        title = "Analyse fehlgeschlagen"
        message = f"Die Schweizer Obligationenrecht-Analyse ist fehlgeschlagen: {error}"
    elif job_type == JobType.CONTRACT_GENERATION.value:
        notification_type = NotificationType.CONTRACT_GENERATION_FAILED
        title = "Vertragsgenerierung fehlgeschlagen"
        message = f"Die Vertragsgenerierung ist fehlgeschlagen: {error}"
    else:
        notification_type = NotificationType.JOB_FAILED
        title = "Auftrag fehlgeschlagen"
        message = f"Der Auftrag ist fehlgeschlagen: {error}"
    return NotificationRecord(
        owner_id=owner_id,
        type=notification_type,
        title=title,
        message=message,
        data={"jobId": job_id, "error": error},
    )


def record_for_event(event: JobEvent) -> NotificationRecord | None:
    """Map a terminal job event to its notification, or None for other events."""
    if not event.job_id or not event.owner_id:
        return None
    job_type = event.job_type or ""
    if event.type == JobEventType.JOB_COMPLETED:
        return completion_record(
            event.job_id,
            job_type,
            event.owner_id,
            result=event.data.get("result"),
            document_id=event.data.get("document_id"),
        )
    if event.type == JobEventType.JOB_FAILED:
        return failure_record(event.job_id, job_type, event.owner_id, event.data.get("error"))
    return None


__all__ = [
    "NotificationType",
    "NotificationRecord",
    "completion_record",
    "failure_record",
    "record_for_event",
]
