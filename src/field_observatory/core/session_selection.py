"""Choosing the "current" session of a date/agency listing.

The data-entry view lists the sessions opened on one date (optionally for one
agency), newest first, and needs to decide which one to show without the user
clicking.  :func:`select_session` is the pure decision;
:class:`AutoSelection` wraps it with the single-shot rule so that a background
reload of the list never takes away a session the user picked by hand.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


class SessionLike(Protocol):
    id: object
    end_time: Optional[datetime]


def select_session(
    sessions: Sequence[SessionLike],
    session_id_from_context: Optional[str],
    already_auto_selected: bool,
) -> Optional[str]:
    """Return the id of the session to auto-select, or ``None``.

    Priority:

    1. Nothing once an auto-selection has already happened.
    2. The context id (URL parameter), if it names a session in the list.
    3. The first unfinished session.  *sessions* is expected newest first,
       so this is the most recent one still running.
    4. ``None`` otherwise; the caller shows the "create a session" state.

    Ids are compared as strings so that UUID objects and their string form
    match.
    """
    if already_auto_selected:
        return None

    if session_id_from_context:
        for session in sessions:
            if str(session.id) == session_id_from_context:
                return session_id_from_context

    for session in sessions:
        if session.end_time is None:
            return str(session.id)

    return None


def count_unfinished(sessions: Sequence[SessionLike]) -> int:
    return sum(1 for s in sessions if s.end_time is None)


@dataclass
class AutoSelection:
    """Single-shot auto-selection state for one page lifetime.

    Call :meth:`on_sessions_loaded` every time the list is (re)loaded.  The
    first call with a non-empty list decides and then locks; later reloads
    leave :attr:`selected_session_id` alone.  An empty list does not lock, so
    the first non-empty load still gets its chance.

    Attributes:
        selected_session_id: The session currently shown.
        has_auto_selected: Whether the one-time auto-selection has fired.
    """

    selected_session_id: Optional[str] = None
    has_auto_selected: bool = False

    def on_sessions_loaded(
        self,
        sessions: Sequence[SessionLike],
        session_id_from_context: Optional[str] = None,
    ) -> Optional[str]:
        """Apply the auto-selection rule to a freshly loaded list.

        Returns:
            The id that was auto-selected on this call, or ``None`` if this
            call did not change the selection.
        """
        if self.has_auto_selected or not sessions:
            return None

        chosen = select_session(sessions, session_id_from_context, self.has_auto_selected)
        self.has_auto_selected = True
        if chosen is not None:
            self.select(chosen)
        return chosen

    def select(self, session_id: Optional[str]) -> None:
        """Record a selection (manual or automatic)."""
        self.selected_session_id = session_id

    def reset(self) -> None:
        """Re-arm auto-selection, e.g. when the date or agency changes."""
        self.has_auto_selected = False
