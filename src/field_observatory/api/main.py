"""ASGI entry point for the Field Observatory API.

Run locally with::

    uvicorn field_observatory.api.main:app --reload

:func:`create_app` builds a fresh application from the current settings;
``app`` is the instance the server imports.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from field_observatory.config.settings import get_settings
from field_observatory.core.exceptions import (
    FieldObservatoryError,
    InvalidAgencyError,
    InvalidMemberError,
    InvalidQuestionError,
    NotFoundError,
    PermissionDeniedError,
    ProjectFinishedError,
    SessionFinishedError,
    StoreUnavailableError,
)
from field_observatory.core.logging_config import configure_logging, request_id_var

logger = structlog.get_logger(__name__)

# First match wins; anything unlisted is a plain 400.
ERROR_STATUS: tuple[tuple[type[FieldObservatoryError], int], ...] = (
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (ProjectFinishedError, status.HTTP_409_CONFLICT),
    (SessionFinishedError, status.HTTP_409_CONFLICT),
    (InvalidAgencyError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidQuestionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InvalidMemberError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StoreUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def error_status(exc: FieldObservatoryError) -> int:
    return next(
        (code for error_cls, code in ERROR_STATUS if isinstance(exc, error_cls)),
        status.HTTP_400_BAD_REQUEST,
    )


async def handle_domain_error(request: Request, exc: FieldObservatoryError) -> JSONResponse:
    """Turn a service-layer error into ``{"detail", "field"?, "action"?}``."""
    code = error_status(exc)
    body: dict[str, object] = {"detail": str(exc)}
    if getattr(exc, "field", None):
        body["field"] = exc.field
    if isinstance(exc, PermissionDeniedError) and exc.action:
        body["action"] = exc.action

    log = logger.error if code >= 500 else logger.info
    log("request.rejected", error=type(exc).__name__, status_code=code, detail=str(exc))
    return JSONResponse(status_code=code, content=body)


async def tag_and_time_request(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Give each request an ID, echo it as ``X-Request-ID`` and log the outcome."""
    request_id = uuid.uuid4().hex
    request_id_var.set(request_id)
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )

    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request.failed", elapsed_ms=_elapsed_ms(started))
        raise

    log = logger.warning if response.status_code >= 400 else logger.info
    log("request.completed", status_code=response.status_code, elapsed_ms=_elapsed_ms(started))
    response.headers["X-Request-ID"] = request_id
    return response


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    from field_observatory.api.routes import (  # noqa: PLC0415
        auth,
        health,
        projects,
        questions,
        sessions,
    )

    application = FastAPI(
        title=settings.app_name,
        description="Timed field observation sessions with CSV and XLSX export.",
        version="0.1.0",
        debug=settings.debug,
        redirect_slashes=False,
    )
    # Credentials on, for the auth cookie.
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.middleware("http")(tag_and_time_request)
    application.add_exception_handler(FieldObservatoryError, handle_domain_error)

    application.include_router(health.router)
    application.include_router(auth.auth_router, prefix="/auth")
    application.include_router(auth.users_router, prefix="/users")
    application.include_router(projects.router, prefix="/projects", tags=["projects"])
    application.include_router(
        questions.router, prefix="/projects/{project_id}/questions", tags=["questions"]
    )
    application.include_router(
        sessions.router, prefix="/projects/{project_id}/sessions", tags=["sessions"]
    )

    logger.info("app.started", app_name=settings.app_name, log_level=settings.log_level)
    return application


app = create_app()
