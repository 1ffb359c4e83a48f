"""Pydantic request/response schemas for sessions and their answers.

``ObservationRead.display`` carries the answer rendered by
:func:`~field_observatory.core.response_formatter.format_response`, so
clients show the same markers ("No response", "Cycle 2", ...) everywhere.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class SessionCreate(BaseModel):
    """Payload for opening a session.

    Attributes:
        agency: One of the project's agencies, or ``None``.
        alias: Optional human-readable name for the session.
    """

    agency: Optional[str] = Field(default=None, max_length=200)
    alias: Optional[str] = Field(default=None, max_length=200)


class ObservationUpsert(BaseModel):
    """Answer to one question.

    ``response`` may be the stored string form or a structured value: a bool
    for boolean questions, a list of labels for checkbox questions, a list of
    ``{"alias", "seconds"}`` objects for timer questions, or a bare URL for
    voice questions.  ``null`` clears the answer.
    """

    response: Any = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SessionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    user_id: uuid.UUID
    agency: Optional[str]
    alias: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]
    status: str = ""
    duration: str = ""
    display_alias: str = ""


class SessionListResponse(BaseModel):
    """Sessions of one date (and optionally one agency), newest first.

    Attributes:
        sessions: The listing.
        date: The requested date.
        agency: The requested agency, if any.
        unfinished_count: Number of sessions still active.
        auto_selected_session_id: The session a client should open without
            user input, following the auto-selection rule.
    """

    sessions: list[SessionRead]
    date: date
    agency: Optional[str] = None
    unfinished_count: int = 0
    auto_selected_session_id: Optional[str] = None


class SessionSearchResponse(BaseModel):
    sessions: list[SessionRead]
    total: int
    agencies: list[str] = Field(default_factory=list)
    dates: list[date] = Field(default_factory=list)


class CycleDisplay(BaseModel):
    label: str
    duration: str


class ResponseDisplay(BaseModel):
    kind: str
    text: str
    cycles: list[CycleDisplay] = Field(default_factory=list)
    url: Optional[str] = None


class ObservationRead(BaseModel):
    id: uuid.UUID
    session_id: uuid.UUID
    question_id: uuid.UUID
    question_name: Optional[str] = None
    question_type: Optional[str] = None
    response: Optional[str]
    display: ResponseDisplay
    updated_at: Optional[datetime] = None


class SessionDetail(BaseModel):
    session: SessionRead
    observations: list[ObservationRead]
