"""Session lifecycle: create, finish, delete, and answer upserts.

A session is Active while ``end_time`` is NULL and Finished once it is set.
Finished is terminal.  The rules enforced here, independent of the HTTP layer:

- Opening a session needs ``can_create_sessions``, an unfinished project and
  an agency the project configures (or none).  One blank answer is created
  for every question visible at that moment.
- Finishing is idempotent and reserved to the creator and admins.
- Deleting is creator-only.  An active session is finished first, then its
  voice recordings are removed best-effort, then its answers, then the row.
- Answers are upserted per ``(session, question)``; last write wins.  The
  project and the session must not be finished and the user must not be a
  viewer.

Every mutation invalidates the project's cached session listings.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Any, Optional

import structlog

from field_observatory.core.blob_store import DEFAULT_VOICE_BUCKET, BlobStore, delete_recordings
from field_observatory.core.exceptions import (
    InvalidAgencyError,
    NotFoundError,
    ProjectFinishedError,
    SessionFinishedError,
)
from field_observatory.core.models.project import Project
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession
from field_observatory.core.response_formatter import (
    QuestionType,
    coerce_question_type,
    encode_response,
    extract_voice_url,
)
from field_observatory.core.roles import (
    Role,
    RoleLike,
    RoleResolution,
    can_create_sessions,
    can_delete_sessions,
    can_edit_observations,
    can_export,
    can_finish_sessions,
    can_view_sessions,
    require_capability,
    resolve_role,
)
from field_observatory.core.session_cache import SessionListCache
from field_observatory.core.session_store import SessionStore

logger = structlog.get_logger(__name__)

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def day_bounds(day: date, tz: tzinfo = timezone.utc) -> tuple[datetime, datetime]:
    """Return the first and last instant of *day* in *tz*.

    The upper bound is 23:59:59.999 so that it can be used with an inclusive
    ``<=`` comparison.
    """
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = start + timedelta(days=1) - timedelta(milliseconds=1)
    return start, end


class SessionService:
    """Applies the session lifecycle rules on top of a :class:`SessionStore`.

    Args:
        store: Persistence gateway.
        blob_store: Object storage holding voice recordings.  When ``None``,
            recording cleanup is skipped.
        cache: Session listing cache to invalidate after mutations.
        voice_bucket: Bucket that voice recordings are uploaded to.
        clock: Returns the current time; injected in tests.
    """

    def __init__(
        self,
        store: SessionStore,
        blob_store: Optional[BlobStore] = None,
        cache: Optional[SessionListCache] = None,
        voice_bucket: str = DEFAULT_VOICE_BUCKET,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.blob_store = blob_store
        self.cache = cache
        self.voice_bucket = voice_bucket
        self._clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_project(self, project_id: uuid.UUID) -> Project:
        project = await self.store.get_project(project_id)
        if project is None:
            raise NotFoundError("project", str(project_id))
        return project

    async def get_session(
        self, session_id: uuid.UUID, project_id: Optional[uuid.UUID] = None
    ) -> ObservationSession:
        """Return the session, optionally checking that it belongs to *project_id*."""
        session = await self.store.get_session(session_id)
        if session is None or (project_id is not None and session.project_id != project_id):
            raise NotFoundError("session", str(session_id))
        return session

    async def resolve_role(self, project: Project, user_id: uuid.UUID) -> RoleResolution:
        return await resolve_role(project, user_id, self.store.get_role_assignment)

    async def _require(
        self,
        project: Project,
        user_id: uuid.UUID,
        predicate: Callable[[RoleLike], bool],
        action: str,
        message: str,
    ) -> Role:
        return await require_capability(
            project, user_id, self.store.get_role_assignment, predicate, action, message
        )

    def _invalidate(self, project_id: uuid.UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate(project_id)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_sessions_for_date(
        self,
        project: Project,
        user_id: uuid.UUID,
        day: date,
        agency: Optional[str] = None,
        tz: tzinfo = timezone.utc,
    ) -> list[ObservationSession]:
        """Return the sessions started on *day* (in *tz*), newest first."""
        await self._require(
            project, user_id, can_view_sessions, "view_sessions", "You cannot view sessions"
        )
        agency = agency or None
        if self.cache is not None:
            cached = self.cache.get(project.id, day, agency)
            if cached is not None:
                return cached

        start, end = day_bounds(day, tz)
        sessions = await self.store.list_sessions(project.id, start=start, end=end, agency=agency)
        if self.cache is not None:
            self.cache.put(project.id, day, agency, sessions)
        return sessions

    async def list_project_sessions(
        self, project: Project, user_id: uuid.UUID
    ) -> list[ObservationSession]:
        await self._require(
            project, user_id, can_view_sessions, "view_sessions", "You cannot view sessions"
        )
        return await self.store.list_sessions(project.id)

    async def get_session_detail(
        self, project: Project, session_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ObservationSession, list[Observation], list[ObservationOption]]:
        """Return a session with its answers and every question of the project."""
        await self._require(
            project, user_id, can_view_sessions, "view_sessions", "You cannot view sessions"
        )
        session = await self.get_session(session_id, project.id)
        observations = await self.store.list_observations(session.id)
        options = await self.store.list_options(project.id, include_hidden=True)
        return session, observations, options

    async def gather_export(
        self, project: Project, user_id: uuid.UUID
    ) -> tuple[list[ObservationSession], list[Observation], list[ObservationOption]]:
        """Load every session, answer and question of the project for an export.

        Raises:
            PermissionDeniedError: The user may not export.
        """
        await self._require(
            project, user_id, can_export, "export_sessions", "You cannot export data"
        )
        sessions = await self.store.list_sessions(project.id)
        observations = await self.store.list_observations_for_sessions([s.id for s in sessions])
        options = await self.store.list_options(project.id, include_hidden=True)
        return sessions, observations, options

    async def gather_session_export(
        self, project: Project, session_id: uuid.UUID, user_id: uuid.UUID
    ) -> tuple[ObservationSession, list[Observation], list[ObservationOption]]:
        """Load one session with its answers and the project's questions for an export."""
        await self._require(
            project, user_id, can_export, "export_sessions", "You cannot export data"
        )
        session = await self.get_session(session_id, project.id)
        observations = await self.store.list_observations(session.id)
        options = await self.store.list_options(project.id, include_hidden=True)
        return session, observations, options

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        project: Project,
        agency: Optional[str],
        user_id: uuid.UUID,
        alias: Optional[str] = None,
    ) -> ObservationSession:
        """Open a new active session and its blank answers.

        Raises:
            PermissionDeniedError: The user may not open sessions.
            ProjectFinishedError: The project is finished.
            InvalidAgencyError: *agency* is not one of the project's agencies.
        """
        await self._require(
            project,
            user_id,
            can_create_sessions,
            "create_session",
            "You do not have permission to create sessions",
        )
        if project.is_finished:
            raise ProjectFinishedError(str(project.id))

        agency = agency.strip() if agency and agency.strip() else None
        if agency is not None and agency not in (project.agencies or []):
            raise InvalidAgencyError(agency, project.agencies)

        session = ObservationSession(
            id=uuid.uuid4(),
            project_id=project.id,
            user_id=user_id,
            agency=agency,
            alias=alias.strip() if alias and alias.strip() else None,
            start_time=self._clock(),
            end_time=None,
        )
        options = await self.store.list_options(project.id)
        placeholders = [
            Observation(
                id=uuid.uuid4(),
                session_id=session.id,
                project_id=project.id,
                user_id=user_id,
                project_observation_option_id=option.id,
                response=None,
            )
            for option in options
        ]
        session = await self.store.insert_session(session, placeholders)
        self._invalidate(project.id)

        logger.info(
            "session.created",
            session_id=str(session.id),
            project_id=str(project.id),
            user_id=str(user_id),
            agency=agency,
            placeholder_count=len(placeholders),
        )
        return session

    async def finish_session(
        self, session: ObservationSession, acting_user_id: uuid.UUID
    ) -> ObservationSession:
        """Set ``end_time`` on an active session.  No-op if already finished."""
        if session.end_time is not None:
            return session

        project = await self.get_project(session.project_id)
        await self._require(
            project,
            acting_user_id,
            can_finish_sessions,
            "finish_session",
            "Only the project creator or an administrator can finish sessions",
        )
        await self._set_end_time(session)
        self._invalidate(session.project_id)
        logger.info(
            "session.finished",
            session_id=str(session.id),
            project_id=str(session.project_id),
            user_id=str(acting_user_id),
        )
        return session

    async def _set_end_time(self, session: ObservationSession) -> None:
        end_time = max(self._clock(), session.start_time)
        await self.store.update_session_end_time(session.id, end_time)
        session.end_time = end_time

    async def delete_session(
        self, session: ObservationSession, acting_user_id: uuid.UUID
    ) -> None:
        """Delete a session and everything attached to it.

        Raises:
            PermissionDeniedError: The user is not the project creator.
        """
        project = await self.get_project(session.project_id)
        await self._require(
            project,
            acting_user_id,
            can_delete_sessions,
            "delete_session",
            "Only the project creator can delete sessions",
        )

        log = logger.bind(session_id=str(session.id), project_id=str(session.project_id))

        if session.end_time is None:
            await self._set_end_time(session)
            log.info("session.finished_before_delete")

        observations = await self.store.list_observations(session.id)
        await delete_recordings(
            self.blob_store,
            self.voice_bucket,
            (extract_voice_url(o.response) for o in observations),
        )

        deleted = await self.store.delete_observations(session.id)
        await self.store.delete_session(session.id)
        self._invalidate(session.project_id)
        log.info("session.deleted", observations_deleted=deleted, user_id=str(acting_user_id))

    # ------------------------------------------------------------------
    # Answers
    # ------------------------------------------------------------------

    async def upsert_observation(
        self,
        session: ObservationSession,
        option_id: uuid.UUID,
        acting_user_id: uuid.UUID,
        value: Any,
    ) -> Observation:
        """Write the answer of one question in one session.

        *value* is validated and encoded for the question type (see
        :func:`~field_observatory.core.response_formatter.encode_response`).
        When a voice answer is replaced, the previous recording is removed
        best-effort after the new answer has been stored.

        Raises:
            PermissionDeniedError: The user is a viewer.
            ProjectFinishedError: The project is finished.
            SessionFinishedError: The session has ended.
            NotFoundError: The question does not belong to the project.
            InvalidQuestionError: *value* does not fit the question type.
        """
        project = await self.get_project(session.project_id)
        await self._require(
            project,
            acting_user_id,
            can_edit_observations,
            "edit_observation",
            "You do not have permission to record observations",
        )
        if project.is_finished:
            raise ProjectFinishedError(str(project.id))
        if session.end_time is not None:
            raise SessionFinishedError(str(session.id))

        option = await self.store.get_option(option_id)
        if option is None or option.project_id != project.id:
            raise NotFoundError("question", str(option_id))

        response = encode_response(value, option.question_type, option.options)

        previous_url: Optional[str] = None
        if coerce_question_type(option.question_type) is QuestionType.VOICE:
            previous = await self.store.get_observation(session.id, option.id)
            if previous is not None:
                previous_url = extract_voice_url(previous.response)

        observation = await self.store.upsert_observation(
            session_id=session.id,
            option_id=option.id,
            project_id=project.id,
            user_id=acting_user_id,
            response=response,
        )
        self._invalidate(project.id)

        if previous_url and previous_url != extract_voice_url(response):
            await delete_recordings(self.blob_store, self.voice_bucket, [previous_url])

        logger.info(
            "observation.upserted",
            session_id=str(session.id),
            option_id=str(option.id),
            user_id=str(acting_user_id),
        )
        return observation
