"""
Handler registry mapping job types to executable units.

A handler is an async callable receiving the job payload and a progress
reporter. Its return value becomes the job result; any exception it raises
fails the job.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from ..errors import UnknownJobTypeError


class JobType(str, Enum):
    """Job types known to the product.

    The registry is keyed by plain strings, so deployments can register
    additional types without extending this enum.
    """
    SWISS_OBLIGATION_ANALYSIS = "swiss-obligation-analysis"
    CONTRACT_ANALYSIS = "contract-analysis"
    CONTRACT_GENERATION = "contract-generation"


class ProgressReporter(Protocol):
    """Callback a handler uses to publish progress (0-100) and a message."""

    async def __call__(self, percent: int, message: str = "") -> None: ...


JobHandler = Callable[[dict[str, Any], ProgressReporter], Awaitable[Any]]


@dataclass
class HandlerInfo:
    """Information about a registered handler."""
    job_type: str
    handler: JobHandler
    description: str = ""


class HandlerRegistry:
    """Registry of job handlers, keyed by job type."""

    def __init__(self):
        self._handlers: dict[str, HandlerInfo] = {}

    def register(
        self,
        job_type: str | JobType,
        handler: JobHandler,
        *,
        description: str = "",
        replace: bool = False,
    ) -> HandlerRegistry:
        """Register a handler for a job type.

        Returns:
            Self for chaining

        Raises:
            ValueError: If the type is taken (and replace is False) or the
                handler is not a coroutine function
        """
        key = _key(job_type)
        if not key:
            raise ValueError("job_type must be a non-empty string")
        if key in self._handlers and not replace:
            raise ValueError(f"Handler for '{key}' is already registered")
        if not inspect.iscoroutinefunction(handler) and not inspect.iscoroutinefunction(
            getattr(handler, "__call__", None)
        ):
            raise ValueError(f"Handler for '{key}' must be an async callable")

        self._handlers[key] = HandlerInfo(job_type=key, handler=handler, description=description)
        return self

    def handler(self, job_type: str | JobType, *, description: str = "") -> Callable[[JobHandler], JobHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(fn: JobHandler) -> JobHandler:
            self.register(job_type, fn, description=description)
            return fn

        return decorator

    def unregister(self, job_type: str | JobType) -> bool:
        return self._handlers.pop(_key(job_type), None) is not None

    def get(self, job_type: str | JobType) -> JobHandler:
        """Get the handler for a job type.

        Raises:
            UnknownJobTypeError: If no handler is registered
        """
        info = self._handlers.get(_key(job_type))
        if info is None:
            raise UnknownJobTypeError(_key(job_type))
        return info.handler

    def __contains__(self, job_type: object) -> bool:
        if not isinstance(job_type, str):
            return False
        return _key(job_type) in self._handlers

    def types(self) -> list[str]:
        return sorted(self._handlers)


def _key(job_type: str | JobType) -> str:
    if isinstance(job_type, JobType):
        return job_type.value
    return job_type


__all__ = [
    "JobType",
    "JobHandler",
    "ProgressReporter",
    "HandlerInfo",
    "HandlerRegistry",
]
