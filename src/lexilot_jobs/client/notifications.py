"""
User-facing notifications for terminal job outcomes.

Texts follow the product's German UI.
"""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from ..jobs.registry import JobType
from ..logging import get_logger

logger = get_logger("lexilot_jobs.notifications")


class NotificationKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class NotificationAction:
    """A link the user can follow from the notification."""
    label: str
    target: str
    alt_text: str | None = None


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    title: str
    message: str
    job_id: str
    action: NotificationAction | None = None


GENERATED_CONTRACTS_ACTION = NotificationAction(
    label="Anzeigen",
    target="/contracts?tab=generated",
    alt_text="Zu generierten Verträgen",
)


def _subject(prefix: str, file_name: str | None) -> str:
    return f'{prefix} für "{file_name}"' if file_name else prefix


def success_notification(job_id: str, job_type: str, file_name: str | None = None) -> Notification:
    """Build the notification shown when a job completes."""
    if job_type == JobType.CONTRACT_GENERATION.value:
        return Notification(
            kind=NotificationKind.SUCCESS,
            title="Vertrag generiert",
            message="Vertrag wurde erfolgreich generiert und gespeichert.",
            job_id=job_id,
            action=GENERATED_CONTRACTS_ACTION,
        )
    prefix = "Vertragsanalyse" if job_type == JobType.CONTRACT_ANALYSIS.value else "Analyse"
    return Notification(
        kind=NotificationKind.SUCCESS,
        title="Analyse abgeschlossen",
        message=f"{_subject(prefix, file_name)} wurde erfolgreich abgeschlossen.",
        job_id=job_id,
    )


def failure_notification(
    job_id: str,
    job_type: str,
    error: str | None = None,
    file_name: str | None = None,
) -> Notification:
    """Build the notification shown when a job fails.

    The job's own error text wins over the type-specific default.
    """
    if job_type == JobType.CONTRACT_GENERATION.value:
        title = "Vertragsgenerierung fehlgeschlagen"
        default = "Vertragsgenerierung ist fehlgeschlagen."
    else:
        prefix = "Vertragsanalyse" if job_type == JobType.CONTRACT_ANALYSIS.value else "Analyse"
        title = "Analyse fehlgeschlagen"
        default = f"{_subject(prefix, file_name)} ist fehlgeschlagen."
    return Notification(
        kind=NotificationKind.FAILURE,
        title=title,
        message=error or default,
        job_id=job_id,
    )


class NotificationSink(ABC):
    """Receives notifications from the job monitor."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the structured log."""

    async def notify(self, notification: Notification) -> None:
        logger.log_event(
            "monitor.notified",
            notification.title,
            kind=notification.kind.value,
            job_id=notification.job_id,
            notification_message=notification.message,
        )


class CallbackNotificationSink(NotificationSink):
    """Forwards notifications to a plain or async callable."""

    def __init__(self, callback: Callable[[Notification], Awaitable[None] | None]):
        self._callback = callback

    async def notify(self, notification: Notification) -> None:
        outcome = self._callback(notification)
        if inspect.isawaitable(outcome):
            await outcome


__all__ = [
    "NotificationKind",
    "NotificationAction",
    "Notification",
    "NotificationSink",
    "LoggingNotificationSink",
    "CallbackNotificationSink",
    "success_notification",
    "failure_notification",
    "GENERATED_CONTRACTS_ACTION",
]
