"""Store gateway for sessions, answers and the project data they depend on.

:class:`SessionStore` is the narrow interface the session lifecycle needs:
insert, update, delete and select, nothing else.  Keeping it abstract lets the
lifecycle rules in :mod:`field_observatory.core.session_service` run against an
in-memory double in tests.

:class:`SqlAlchemySessionStore` is the production implementation.  Every write
method commits before returning.  Connection-level failures are re-raised as
:class:`~field_observatory.core.exceptions.StoreUnavailableError`; integrity
errors are programming or concurrency errors and propagate unchanged.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from field_observatory.core.exceptions import StoreUnavailableError
from field_observatory.core.models.project import Project, ProjectUser
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession

logger = structlog.get_logger(__name__)


class SessionStore(ABC):
    """Persistence operations required by the session lifecycle."""

    # -- projects ------------------------------------------------------

    @abstractmethod
    async def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        """Return the project, or ``None`` if it does not exist."""

    @abstractmethod
    async def get_role_assignment(
        self, project_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[str]:
        """Return the stored role string of *user_id* on *project_id*, if any."""

    @abstractmethod
    async def list_options(
        self, project_id: uuid.UUID, include_hidden: bool = False
    ) -> list[ObservationOption]:
        """Return the project's questions ordered by ``sort_order``."""

    @abstractmethod
    async def get_option(self, option_id: uuid.UUID) -> Optional[ObservationOption]:
        ...

    # -- sessions ------------------------------------------------------

    @abstractmethod
    async def insert_session(
        self,
        session: ObservationSession,
        observations: Sequence[Observation] = (),
    ) -> ObservationSession:
        """Insert a session together with its placeholder answers, atomically."""

    @abstractmethod
    async def get_session(self, session_id: uuid.UUID) -> Optional[ObservationSession]:
        ...

    @abstractmethod
    async def update_session_end_time(self, session_id: uuid.UUID, end_time: datetime) -> None:
        ...

    @abstractmethod
    async def delete_session(self, session_id: uuid.UUID) -> None:
        ...

    @abstractmethod
    async def list_sessions(
        self,
        project_id: uuid.UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        agency: Optional[str] = None,
    ) -> list[ObservationSession]:
        """Return sessions with ``start <= start_time <= end``, newest first.

        Either bound may be omitted; *agency* filters on exact match.
        """

    # -- observations --------------------------------------------------

    @abstractmethod
    async def list_observations(self, session_id: uuid.UUID) -> list[Observation]:
        ...

    @abstractmethod
    async def list_observations_for_sessions(
        self, session_ids: Sequence[uuid.UUID]
    ) -> list[Observation]:
        ...

    @abstractmethod
    async def get_observation(
        self, session_id: uuid.UUID, option_id: uuid.UUID
    ) -> Optional[Observation]:
        ...

    @abstractmethod
    async def upsert_observation(
        self,
        *,
        session_id: uuid.UUID,
        option_id: uuid.UUID,
        project_id: uuid.UUID,
        user_id: uuid.UUID,
        response: Optional[str],
    ) -> Observation:
        """Insert or overwrite the answer keyed by ``(session_id, option_id)``."""

    @abstractmethod
    async def delete_observations(self, session_id: uuid.UUID) -> int:
        """Delete every answer of a session and return how many were removed."""


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlAlchemySessionStore(SessionStore):
    """:class:`SessionStore` backed by an async SQLAlchemy session.

    Args:
        session: An open :class:`sqlalchemy.ext.asyncio.AsyncSession`.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (OperationalError, InterfaceError, OSError) as exc:
            await self.session.rollback()
            logger.error("store.unavailable", operation=operation, error=str(exc))
            raise StoreUnavailableError(
                f"Database unavailable during {operation}",
                operation=operation,
            ) from exc

    # -- projects ------------------------------------------------------

    async def get_project(self, project_id: uuid.UUID) -> Optional[Project]:
        async with self._guard("get_project"):
            return await self.session.get(Project, project_id)

    async def get_role_assignment(
        self, project_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[str]:
        stmt = select(ProjectUser.role).where(
            ProjectUser.project_id == project_id,
            ProjectUser.user_id == user_id,
        )
        async with self._guard("get_role_assignment"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_options(
        self, project_id: uuid.UUID, include_hidden: bool = False
    ) -> list[ObservationOption]:
        stmt = select(ObservationOption).where(ObservationOption.project_id == project_id)
        if not include_hidden:
            stmt = stmt.where(ObservationOption.is_visible.is_(True))
        stmt = stmt.order_by(ObservationOption.sort_order)
        async with self._guard("list_options"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    async def get_option(self, option_id: uuid.UUID) -> Optional[ObservationOption]:
        async with self._guard("get_option"):
            return await self.session.get(ObservationOption, option_id)

    # -- sessions ------------------------------------------------------

    async def insert_session(
        self,
        session: ObservationSession,
        observations: Sequence[Observation] = (),
    ) -> ObservationSession:
        async with self._guard("insert_session"):
            self.session.add(session)
            await self.session.flush()
            for observation in observations:
                observation.session_id = session.id
            self.session.add_all(list(observations))
            await self.session.commit()
            await self.session.refresh(session)
        return session

    async def get_session(self, session_id: uuid.UUID) -> Optional[ObservationSession]:
        async with self._guard("get_session"):
            return await self.session.get(ObservationSession, session_id)

    async def update_session_end_time(self, session_id: uuid.UUID, end_time: datetime) -> None:
        stmt = (
            update(ObservationSession)
            .where(ObservationSession.id == session_id)
            .where(ObservationSession.end_time.is_(None))
            .values(end_time=end_time)
        )
        async with self._guard("update_session_end_time"):
            await self.session.execute(stmt)
            await self.session.commit()

    async def delete_session(self, session_id: uuid.UUID) -> None:
        async with self._guard("delete_session"):
            await self.session.execute(
                delete(ObservationSession).where(ObservationSession.id == session_id)
            )
            await self.session.commit()

    async def list_sessions(
        self,
        project_id: uuid.UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        agency: Optional[str] = None,
    ) -> list[ObservationSession]:
        stmt = select(ObservationSession).where(ObservationSession.project_id == project_id)
        if start is not None:
            stmt = stmt.where(ObservationSession.start_time >= start)
        if end is not None:
            stmt = stmt.where(ObservationSession.start_time <= end)
        if agency is not None:
            stmt = stmt.where(ObservationSession.agency == agency)
        stmt = stmt.order_by(ObservationSession.start_time.desc())
        async with self._guard("list_sessions"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    # -- observations --------------------------------------------------

    async def list_observations(self, session_id: uuid.UUID) -> list[Observation]:
        stmt = select(Observation).where(Observation.session_id == session_id)
        async with self._guard("list_observations"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    async def list_observations_for_sessions(
        self, session_ids: Sequence[uuid.UUID]
    ) -> list[Observation]:
        if not session_ids:
            return []
        stmt = select(Observation).where(Observation.session_id.in_(list(session_ids)))
        async with self._guard("list_observations_for_sessions"):
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

    async def get_observation(
        self, session_id: uuid.UUID, option_id: uuid.UUID
    ) -> Optional[Observation]:
        stmt = select(Observation).where(
            Observation.session_id == session_id,
            Observation.project_observation_option_id == option_id,
        )
        async with self._guard("get_observation"):
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

    async def upsert_observation(
        self,
        *,
        session_id: uuid.UUID,
        option_id: uuid.UUID,
        project_id: uuid.UUID,
        user_id: uuid.UUID,
        response: Optional[str],
    ) -> Observation:
        existing = await self.get_observation(session_id, option_id)
        async with self._guard("upsert_observation"):
            if existing is not None:
                existing.response = response
                existing.user_id = user_id
                await self.session.commit()
                await self.session.refresh(existing)
                return existing

            observation = Observation(
                session_id=session_id,
                project_id=project_id,
                user_id=user_id,
                project_observation_option_id=option_id,
                response=response,
            )
            self.session.add(observation)
            try:
                await self.session.commit()
            except IntegrityError:
                # Another writer inserted the same (session, option) first.
                await self.session.rollback()
                logger.info(
                    "observation.upsert_conflict",
                    session_id=str(session_id),
                    option_id=str(option_id),
                )
                existing = await self.get_observation(session_id, option_id)
                if existing is None:
                    raise
                existing.response = response
                existing.user_id = user_id
                await self.session.commit()
                observation = existing
            await self.session.refresh(observation)
            return observation

    async def delete_observations(self, session_id: uuid.UUID) -> int:
        async with self._guard("delete_observations"):
            result = await self.session.execute(
                delete(Observation).where(Observation.session_id == session_id)
            )
            await self.session.commit()
            return int(result.rowcount or 0)
