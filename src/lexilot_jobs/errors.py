"""
Error taxonomy for lexilot-jobs.

This module provides a hierarchical exception system with:
- Error codes for programmatic handling
- Retryable vs non-retryable classification
- Structured context for debugging
- HTTP status mapping for the job query API and its clients
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for the job system."""

    # Validation errors (2xxx)
    VALIDATION_ERROR = "ERR_2000"
    SCHEMA_VALIDATION = "ERR_2001"

    # Job state errors (3xxx)
    NOT_FOUND = "ERR_3000"
    INVALID_TRANSITION = "ERR_3001"
    ALREADY_EXISTS = "ERR_3002"

    # Handler errors (4xxx)
    HANDLER_EXECUTION = "ERR_4000"
    UNKNOWN_JOB_TYPE = "ERR_4001"

    # Polling errors (5xxx)
    TRANSIENT_POLL = "ERR_5000"

    # Configuration errors (6xxx)
    CONFIG_ERROR = "ERR_6000"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "ERR_9000"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    job_id: str | None = None
    owner_id: str | None = None
    job_type: str | None = None
    operation: str | None = None
    attempt: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "job_type": self.job_type,
            "operation": self.operation,
            "attempt": self.attempt,
            **self.extra,
        }


class JobsError(Exception):
    """
    Base exception for all job system errors.

    Attributes:
        code: Standardized error code for programmatic handling
        message: Human-readable error message
        retryable: Whether the operation can be retried
        http_status: Status code used when the error crosses the HTTP API
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False
    http_status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.job_id:
            parts.append(f"(job_id={self.context.job_id})")
        return " ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(JobsError):
    """Missing or invalid request parameters. Nothing was created."""

    code = ErrorCode.VALIDATION_ERROR
    http_status = 400


class SchemaValidationError(ValidationError):
    """A stored or transmitted job record does not match the job schema.

    Raised for unknown status spellings (e.g. ``running``) instead of
    tolerating them.
    """

    code = ErrorCode.SCHEMA_VALIDATION
    http_status = 502


# =============================================================================
# Job State Errors
# =============================================================================


class NotFoundError(JobsError):
    """Unknown job id or ownership mismatch.

    Both cases use the same message so a non-owner cannot learn that a job
    exists.
    """

    code = ErrorCode.NOT_FOUND
    http_status = 404

    def __init__(self, message: str = "Job not found", **kwargs):
        super().__init__(message, **kwargs)


class InvalidTransitionError(JobsError):
    """A status change that would violate the job lifecycle."""

    code = ErrorCode.INVALID_TRANSITION
    http_status = 409


class JobExistsError(JobsError):
    """A job with the same id is already stored."""

    code = ErrorCode.ALREADY_EXISTS
    http_status = 409


# =============================================================================
# Handler Errors
# =============================================================================


class HandlerExecutionError(JobsError):
    """An exception raised inside a job handler.

    Captured by the dispatcher and recorded on the job; never propagated to
    the caller that created the job.
    """

    code = ErrorCode.HANDLER_EXECUTION


class UnknownJobTypeError(ValidationError):
    """No handler is registered for the requested job type."""

    code = ErrorCode.UNKNOWN_JOB_TYPE

    def __init__(self, job_type: str, **kwargs):
        super().__init__(f"Unknown job type: {job_type}", **kwargs)
        self.job_type = job_type


# =============================================================================
# Polling Errors
# =============================================================================


class TransientPollError(JobsError):
    """Network or server error while polling job state. Retryable."""

    code = ErrorCode.TRANSIENT_POLL
    retryable = True
    http_status = 503

    def __init__(
        self,
        message: str = "Job status request failed",
        *,
        status: int | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status = status


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(JobsError):
    """Invalid configuration value."""

    code = ErrorCode.CONFIG_ERROR


def error_from_status(
    status: int,
    message: str,
    *,
    job_id: str | None = None,
) -> JobsError:
    """
    Map an HTTP status code from the job query API to an error.

    Args:
        status: HTTP status code
        message: Error message from the response body
        job_id: Job the request was about, if any

    Returns:
        Appropriate JobsError subclass
    """
    ctx = ErrorContext(job_id=job_id, extra={"http_status": status})
    if status == 404:
        return NotFoundError(message or "Job not found", context=ctx)
    if status in (400, 422):
        return ValidationError(message, context=ctx)
    return TransientPollError(message, status=status, context=ctx)


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, JobsError):
        return error.retryable

    import asyncio

    retryable_types = (
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


__all__ = [
    "ErrorCode",
    "ErrorContext",
    "JobsError",
    "ValidationError",
    "SchemaValidationError",
    "NotFoundError",
    "InvalidTransitionError",
    "JobExistsError",
    "HandlerExecutionError",
    "UnknownJobTypeError",
    "TransientPollError",
    "ConfigError",
    "error_from_status",
    "is_retryable",
]
