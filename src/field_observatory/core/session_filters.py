"""In-memory search and filtering of a project's session list.

The sessions overview loads every session of a project once and narrows it
down client-side by free text, agency and date.  The same rules are applied
here so the API can answer the narrowed query directly.

Dates are compared in a caller-supplied timezone (the project's reporting
timezone, ``Settings.export_timezone``), using the session's ``start_time``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone, tzinfo
from typing import Optional, Protocol

from field_observatory.core.response_formatter import format_duration

ACTIVE_LABEL = "Active"
FINISHED_LABEL = "Finished"
ACTIVE_DURATION = "Active session"
NO_ALIAS = "No alias"


class FilterableSession(Protocol):
    id: object
    alias: Optional[str]
    agency: Optional[str]
    start_time: datetime
    end_time: Optional[datetime]


def local_date(moment: datetime, tz: tzinfo = timezone.utc) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def session_status_label(session: FilterableSession) -> str:
    return FINISHED_LABEL if session.end_time is not None else ACTIVE_LABEL


def session_duration_seconds(session: FilterableSession) -> Optional[int]:
    """Whole seconds between start and end, or ``None`` while active."""
    if session.end_time is None:
        return None
    return max(int((session.end_time - session.start_time).total_seconds()), 0)


def session_duration(session: FilterableSession) -> str:
    """``H:MM:SS`` / ``M:SS`` for finished sessions, ``"Active session"`` otherwise."""
    seconds = session_duration_seconds(session)
    if seconds is None:
        return ACTIVE_DURATION
    return format_duration(seconds)


def session_display_alias(session: FilterableSession) -> str:
    """The alias, or ``"Session <first 8 id chars>"`` when none was given."""
    return session.alias or f"Session {str(session.id)[:8]}"


@dataclass(frozen=True)
class SessionFilter:
    """Criteria for :func:`filter_sessions`.  Empty criteria match everything.

    Attributes:
        search: Case-insensitive substring matched against alias and agency.
        agency: Exact agency name.
        day: Local start date.
    """

    search: Optional[str] = None
    agency: Optional[str] = None
    day: Optional[date] = None

    def matches(self, session: FilterableSession, tz: tzinfo = timezone.utc) -> bool:
        term = (self.search or "").strip().lower()
        if term:
            in_alias = bool(session.alias) and term in session.alias.lower()
            in_agency = bool(session.agency) and term in session.agency.lower()
            if not (in_alias or in_agency):
                return False
        if self.agency and session.agency != self.agency:
            return False
        if self.day is not None and local_date(session.start_time, tz) != self.day:
            return False
        return True


def filter_sessions(
    sessions: Sequence[FilterableSession],
    criteria: SessionFilter,
    tz: tzinfo = timezone.utc,
) -> list[FilterableSession]:
    """Return the sessions matching *criteria*, preserving input order."""
    return [s for s in sessions if criteria.matches(s, tz)]


def unique_agencies(sessions: Sequence[FilterableSession]) -> list[str]:
    """Sorted distinct non-empty agencies, for the filter menu."""
    return sorted({s.agency for s in sessions if s.agency})


def unique_dates(
    sessions: Sequence[FilterableSession], tz: tzinfo = timezone.utc
) -> list[date]:
    return sorted({local_date(s.start_time, tz) for s in sessions})
