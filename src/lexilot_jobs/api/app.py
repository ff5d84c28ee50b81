from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import Settings, get_settings
from ..errors import JobsError, NotFoundError, SchemaValidationError, ValidationError
from ..events import InMemoryEventBus
from ..jobs import JobDispatcher, JobType
from ..jobs.dispatcher import MAX_PAGE_SIZE
from ..logging import get_logger
from ..notifications import NotificationRecorder, NotificationStore
from ..schemas import (
    ContractGenerateRequest,
    ErrorResponse,
    JobCreatedResponse,
    JobListResponse,
    JobStatusResponse,
    JobView,
    MessageResponse,
    NotificationListResponse,
    NotificationView,
    Pagination,
    SwissObligationAnalysisRequest,
)
from ..storage import create_notification_store
from .auth import Principal, require_principal

logger = get_logger("lexilot_jobs.api")

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status: {"model": ErrorResponse} for status in (400, 401, 404)
}

_ERROR_TITLES = {
    400: "Invalid request",
    401: "Unauthorized",
    404: "Job not found",
    409: "Conflict",
}


def _error_response(status_code: int, message: str, title: str | None = None) -> JSONResponse:
    title = title or _ERROR_TITLES.get(status_code, "Internal server error")
    return JSONResponse(status_code=status_code, content={"error": title, "message": message})


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_notification_store(request: Request) -> NotificationStore:
    return request.app.state.notifications


def create_app(
    dispatcher: JobDispatcher,
    settings: Settings | None = None,
    *,
    notification_store: NotificationStore | None = None,
) -> FastAPI:
    """Build the job query and notification API around a dispatcher.

    The dispatcher's worker pool and the notification recorder are started
    and stopped with the app. A dispatcher without an event bus is given an
    in-memory one so finished jobs reach the notification store.
    """
    settings = settings or get_settings()
    bus = dispatcher.event_bus
    if bus is None:
        bus = dispatcher.event_bus = InMemoryEventBus()
    if notification_store is None:
        notification_store = create_notification_store(settings.store)
    recorder = NotificationRecorder(bus, notification_store)

    app = FastAPI(title="Lexilot Jobs", version="0.1.0")
    app.state.dispatcher = dispatcher
    app.state.settings = settings
    app.state.notifications = notification_store
    app.state.notification_recorder = recorder

    @app.on_event("startup")
    async def _startup() -> None:
        await recorder.start()
        await dispatcher.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await dispatcher.shutdown(drain=False)
        await recorder.stop()

    @app.exception_handler(JobsError)
    async def _jobs_error(request: Request, exc: JobsError) -> JSONResponse:
        if isinstance(exc, NotFoundError):
            return _error_response(404, exc.message, title=exc.message)
        if isinstance(exc, ValidationError) and not isinstance(exc, SchemaValidationError):
            return _error_response(400, exc.message)
        logger.error("Request failed", path=request.url.path, error=exc.to_dict())
        return _error_response(500, "Internal server error")

    @app.exception_handler(RequestValidationError)
    async def _request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return _error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, str(exc.detail))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    # -- job queries ---------------------------------------------------------

    async def _job_status(job_id: str, principal: Principal, dispatcher: JobDispatcher) -> JobStatusResponse:
        logger.info("Job status requested", job_id=job_id, owner_id=principal.owner_id)
        job = await dispatcher.get_job(job_id, principal.owner_id)
        return JobStatusResponse.model_validate(job.to_view())

    @app.get("/documents/jobs/{job_id}", response_model=JobStatusResponse, responses=_ERROR_RESPONSES)
    async def get_document_job(
        job_id: str,
        principal: Principal = Depends(require_principal),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> JobStatusResponse:
        return await _job_status(job_id, principal, dispatcher)

    @app.get("/contracts/jobs/{job_id}", response_model=JobStatusResponse, responses=_ERROR_RESPONSES)
    async def get_contract_job(
        job_id: str,
        principal: Principal = Depends(require_principal),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> JobStatusResponse:
        return await _job_status(job_id, principal, dispatcher)

    @app.get("/documents/jobs", response_model=JobListResponse, responses=_ERROR_RESPONSES)
    async def list_jobs(
        limit: int = 20,
        offset: int = 0,
        principal: Principal = Depends(require_principal),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> JobListResponse:
        page = await dispatcher.get_user_jobs(principal.owner_id, limit=limit, offset=offset)
        return JobListResponse(
            jobs=[JobView.from_record(job, include_payload=True) for job in page.jobs],
            pagination=Pagination(
                limit=page.limit,
                offset=page.offset,
                total=page.total,
                has_more=page.has_more,
            ),
        )

    # -- job-creating features -----------------------------------------------

    @app.post(
        "/documents/{document_id}/swiss-obligation-analysis",
        response_model=JobCreatedResponse,
        status_code=202,
        responses=_ERROR_RESPONSES,
    )
    async def start_swiss_obligation_analysis(
        document_id: str,
        body: SwissObligationAnalysisRequest | None = None,
        principal: Principal = Depends(require_principal),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> JobCreatedResponse:
        payload: dict[str, Any] = {"documentId": document_id, "userId": principal.owner_id}
        if body is not None and body.file_name:
            payload["fileName"] = body.file_name
        job_id = await dispatcher.create_job(
            JobType.SWISS_OBLIGATION_ANALYSIS, principal.owner_id, payload
        )
        logger.info(
            "Swiss obligation analysis job created",
            job_id=job_id, owner_id=principal.owner_id, document_id=document_id,
        )
        return JobCreatedResponse(
            job_id=job_id,
            message="Analysis started in background. You will receive a notification when completed.",
        )

    @app.post(
        "/contracts/generate",
        response_model=JobCreatedResponse,
        status_code=202,
        responses=_ERROR_RESPONSES,
    )
    async def generate_contract(
        body: ContractGenerateRequest,
        principal: Principal = Depends(require_principal),
        dispatcher: JobDispatcher = Depends(get_dispatcher),
    ) -> JobCreatedResponse:
        payload = {
            "contractType": body.contract_type,
            "parameters": body.parameters,
            "userId": principal.owner_id,
        }
        job_id = await dispatcher.create_job(JobType.CONTRACT_GENERATION, principal.owner_id, payload)
        logger.info("Contract generation job created", job_id=job_id, owner_id=principal.owner_id)
        return JobCreatedResponse(
            job_id=job_id,
            message="Contract generation started in background.",
        )

    # -- notifications --------------------------------------------------------

    @app.get("/user/notifications", response_model=NotificationListResponse, responses=_ERROR_RESPONSES)
    async def list_notifications(
        limit: int = 20,
        offset: int = 0,
        unread_only: bool = Query(False, alias="unreadOnly"),
        principal: Principal = Depends(require_principal),
        notifications: NotificationStore = Depends(get_notification_store),
    ) -> NotificationListResponse:
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset cannot be negative")

        records = await notifications.list(
            principal.owner_id, limit=limit, offset=offset, unread_only=unread_only
        )
        total = await notifications.count(principal.owner_id, unread_only=unread_only)
        return NotificationListResponse(
            notifications=[NotificationView.model_validate(record.to_view()) for record in records],
            pagination=Pagination(
                limit=limit,
                offset=offset,
                total=total,
                has_more=offset + limit < total,
            ),
        )

    @app.put(
        "/user/notifications/{notification_id}/read",
        response_model=MessageResponse,
        responses=_ERROR_RESPONSES,
    )
    async def mark_notification_read(
        notification_id: str,
        principal: Principal = Depends(require_principal),
        notifications: NotificationStore = Depends(get_notification_store),
    ) -> MessageResponse:
        await notifications.mark_read(notification_id, principal.owner_id)
        logger.info("Notification marked read", notification_id=notification_id, owner_id=principal.owner_id)
        return MessageResponse(message="Notification marked as read")

    return app


__all__ = ["create_app", "get_dispatcher", "get_notification_store"]
