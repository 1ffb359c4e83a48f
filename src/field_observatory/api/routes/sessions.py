"""Session routes, mounted under ``/projects/{project_id}/sessions``.

Routes:
    GET    /                              - sessions of one date (and agency), newest first
    POST   /                              - open a session with blank answers
    GET    /search                        - whole-project listing narrowed by text/agency/date
    GET    /export                        - CSV or XLSX download of the project
    GET    /{session_id}/export           - CSV or XLSX download of one session
    GET    /{session_id}                  - session with rendered answers
    POST   /{session_id}/finish           - finish (idempotent)
    DELETE /{session_id}                  - delete with answers and recordings
    PUT    /{session_id}/observations/{question_id} - upsert one answer

Dates are interpreted in ``Settings.export_timezone``.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, tzinfo
from typing import Annotated, Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Response, status

from field_observatory.api.dependencies import (
    get_current_active_user,
    get_export_timezone,
    get_project_for_user,
    get_session_service,
)
from field_observatory.core.export import ExportTable, SessionExporter
from field_observatory.core.models.project import Project
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession
from field_observatory.core.models.users import User
from field_observatory.core.project_service import ProjectService, get_project_service
from field_observatory.core.response_formatter import format_response
from field_observatory.core.schemas.session import (
    ObservationRead,
    ObservationUpsert,
    ResponseDisplay,
    SessionCreate,
    SessionDetail,
    SessionListResponse,
    SessionRead,
    SessionSearchResponse,
)
from field_observatory.core.session_filters import (
    SessionFilter,
    filter_sessions,
    session_display_alias,
    session_duration,
    session_status_label,
    unique_agencies,
    unique_dates,
)
from field_observatory.core.session_selection import AutoSelection, count_unfinished
from field_observatory.core.session_service import SessionService

logger = structlog.get_logger(__name__)

router = APIRouter()

Sessions = Annotated[SessionService, Depends(get_session_service)]
CurrentProject = Annotated[Project, Depends(get_project_for_user)]
CurrentUser = Annotated[User, Depends(get_current_active_user)]
ExportTimezone = Annotated[tzinfo, Depends(get_export_timezone)]

_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _session_read(session: ObservationSession) -> SessionRead:
    read = SessionRead.model_validate(session)
    read.status = session_status_label(session)
    read.duration = session_duration(session)
    read.display_alias = session_display_alias(session)
    return read


def _observation_read(
    observation: Observation, option: Optional[ObservationOption]
) -> ObservationRead:
    question_type = option.question_type if option is not None else None
    display = format_response(observation.response, question_type)
    return ObservationRead(
        id=observation.id,
        session_id=observation.session_id,
        question_id=observation.project_observation_option_id,
        question_name=option.name if option is not None else None,
        question_type=question_type,
        response=observation.response,
        display=ResponseDisplay(**display.to_dict()),
        updated_at=observation.updated_at,
    )


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


@router.get("/", response_model=SessionListResponse)
async def list_sessions(
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
    tz: ExportTimezone,
    day: Annotated[Optional[date], Query(alias="date")] = None,
    agency: Optional[str] = None,
    session_id: Optional[str] = None,
    auto_selected: bool = False,
) -> SessionListResponse:
    """List the sessions started on one date, newest first.

    ``session_id`` is the id the client was opened with (e.g. from a link);
    it takes priority when choosing ``auto_selected_session_id``.  Without
    it, the most recent active session is suggested.  A client that already
    auto-selected on this page passes ``auto_selected=true`` when it reloads
    the list, and no suggestion is made.
    """
    day = day or datetime.now(tz).date()
    listing = await sessions.list_sessions_for_date(
        project, current_user.id, day, agency=agency, tz=tz
    )
    return SessionListResponse(
        sessions=[_session_read(s) for s in listing],
        date=day,
        agency=agency or None,
        unfinished_count=count_unfinished(listing),
        auto_selected_session_id=AutoSelection(
            has_auto_selected=auto_selected
        ).on_sessions_loaded(listing, session_id),
    )


@router.get("/search", response_model=SessionSearchResponse)
async def search_sessions(
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
    tz: ExportTimezone,
    q: Optional[str] = None,
    agency: Optional[str] = None,
    day: Annotated[Optional[date], Query(alias="date")] = None,
) -> SessionSearchResponse:
    """Return every project session matching the filters.

    ``agencies`` and ``dates`` are computed over the unfiltered list so a
    client can populate its filter menus from one call.
    """
    everything = await sessions.list_project_sessions(project, current_user.id)
    matched = filter_sessions(everything, SessionFilter(search=q, agency=agency, day=day), tz)
    return SessionSearchResponse(
        sessions=[_session_read(s) for s in matched],
        total=len(matched),
        agencies=unique_agencies(everything),
        dates=unique_dates(everything, tz),
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


@router.get("/export")
async def export_sessions(
    project: CurrentProject,
    sessions: Sessions,
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: CurrentUser,
    tz: ExportTimezone,
    fmt: Annotated[Literal["csv", "xlsx"], Query(alias="format")] = "csv",
    mode: Literal["sessions", "questions"] = "sessions",
    details: bool = False,
) -> Response:
    """Download every session of the project as CSV or XLSX.

    Args:
        fmt: ``csv`` (UTF-8 with BOM) or ``xlsx``.
        mode: ``sessions`` for one row per session, ``questions`` for one
            row per session and question.
        details: Add alias, user, start, end and duration columns.
    """
    rows, observations, options = await sessions.gather_export(project, current_user.id)
    emails = await projects.get_user_emails(list({s.user_id for s in rows})) if details else {}

    exporter = SessionExporter(tz=tz)
    table = exporter.build_table(
        rows, observations, options, mode=mode, include_details=details, user_emails=emails
    )
    logger.info(
        "export.completed",
        project_id=str(project.id),
        user_id=str(current_user.id),
        format=fmt,
        mode=mode,
        rows=len(table.rows),
    )
    return await _download(exporter, table, fmt, f"sessions_{project.id}", tz)


@router.get("/{session_id}/export")
async def export_session(
    session_id: uuid.UUID,
    project: CurrentProject,
    sessions: Sessions,
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: CurrentUser,
    tz: ExportTimezone,
    fmt: Annotated[Literal["csv", "xlsx"], Query(alias="format")] = "csv",
) -> Response:
    """Download one session as a single row with its details and answers."""
    session, observations, options = await sessions.gather_session_export(
        project, session_id, current_user.id
    )
    emails = await projects.get_user_emails([session.user_id])

    exporter = SessionExporter(tz=tz)
    table = exporter.build_table(
        [session], observations, options, include_details=True, user_emails=emails
    )
    logger.info(
        "export.session_completed",
        session_id=str(session.id),
        user_id=str(current_user.id),
        format=fmt,
    )
    return await _download(exporter, table, fmt, f"session_{session.id}", tz)


async def _download(
    exporter: SessionExporter, table: ExportTable, fmt: str, stem: str, tz: tzinfo
) -> Response:
    if fmt == "xlsx":
        content = await exporter.export_xlsx(table)
    else:
        content = await exporter.export_csv(table)
    filename = f"{stem}_{datetime.now(tz).strftime('%Y%m%d')}.{fmt}"
    return Response(
        content=content,
        media_type=_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("/", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: SessionCreate,
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
) -> SessionRead:
    session = await sessions.create_session(
        project, body.agency, current_user.id, alias=body.alias
    )
    return _session_read(session)


@router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: uuid.UUID,
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
) -> SessionDetail:
    """Return the session and its answers, in question order.

    Answers to questions that were hidden after the session was opened are
    still returned.
    """
    session, observations, options = await sessions.get_session_detail(
        project, session_id, current_user.id
    )
    by_id = {o.id: o for o in options}
    position = {o.id: o.sort_order for o in options}
    ordered = sorted(
        observations,
        key=lambda o: position.get(o.project_observation_option_id, len(position) + 1),
    )
    return SessionDetail(
        session=_session_read(session),
        observations=[
            _observation_read(o, by_id.get(o.project_observation_option_id)) for o in ordered
        ],
    )


@router.post("/{session_id}/finish", response_model=SessionRead)
async def finish_session(
    session_id: uuid.UUID,
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
) -> SessionRead:
    session = await sessions.get_session(session_id, project.id)
    finished = await sessions.finish_session(session, current_user.id)
    return _session_read(finished)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: uuid.UUID,
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
) -> Response:
    session = await sessions.get_session(session_id, project.id)
    await sessions.delete_session(session, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Answers
# ---------------------------------------------------------------------------


@router.put("/{session_id}/observations/{question_id}", response_model=ObservationRead)
async def upsert_observation(
    session_id: uuid.UUID,
    question_id: uuid.UUID,
    body: ObservationUpsert,
    project: CurrentProject,
    sessions: Sessions,
    current_user: CurrentUser,
) -> ObservationRead:
    session = await sessions.get_session(session_id, project.id)
    observation = await sessions.upsert_observation(
        session, question_id, current_user.id, body.response
    )
    option = await sessions.store.get_option(question_id)
    return _observation_read(observation, option)
