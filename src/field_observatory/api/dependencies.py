"""FastAPI dependency injection providers.

Dependency hierarchy::

    get_current_user          - requires any valid JWT (cookie or bearer)
    get_current_active_user   - additionally requires is_active=True

    get_session_store         - SqlAlchemySessionStore on the request's DB session
    get_session_service       - SessionService with store, blob store and cache
    get_project_for_user      - loads the path's project (404 if missing)

The process-wide listing cache and MinIO store come from
:func:`~field_observatory.core.session_cache.get_session_cache` and
:func:`~field_observatory.core.blob_store.get_blob_store`; tests override the
dependencies through ``app.dependency_overrides``.

Note on import order:
    This module imports from ``api.routes.auth`` at the function level to
    avoid a circular import (``auth.py`` → ``user_manager.py`` →
    ``database.py``).
"""

from __future__ import annotations

import uuid
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from field_observatory.config.settings import get_settings
from field_observatory.core.blob_store import BlobStore, get_blob_store
from field_observatory.core.database import get_db
from field_observatory.core.models.project import Project
from field_observatory.core.models.users import User
from field_observatory.core.project_service import ProjectService, get_project_service
from field_observatory.core.session_cache import SessionListCache, get_session_cache
from field_observatory.core.session_service import SessionService
from field_observatory.core.session_store import SessionStore, SqlAlchemySessionStore


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def _current_user_dep(*, active: bool, optional: bool):  # type: ignore[no-untyped-def]
    """Return a FastAPI-Users ``current_user`` dependency, imported lazily."""
    from field_observatory.api.routes.auth import fastapi_users  # noqa: PLC0415

    return fastapi_users.current_user(active=active, optional=optional)


async def get_current_user(
    user: Annotated[User, Depends(_current_user_dep(active=False, optional=False))],
) -> User:
    return user


async def get_current_active_user(
    user: Annotated[User, Depends(_current_user_dep(active=True, optional=False))],
) -> User:
    """Require a valid JWT and ``is_active=True``.

    Raises:
        HTTPException 401: If no valid JWT is present.
        HTTPException 403: If the user account is not active.
    """
    return user


# ---------------------------------------------------------------------------
# Settings-derived values
# ---------------------------------------------------------------------------


def get_export_timezone() -> ZoneInfo:
    """Timezone used for date boundaries and export date columns."""
    return ZoneInfo(get_settings().export_timezone)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def get_session_store(
    session: Annotated[AsyncSession, Depends(get_db)],
) -> SessionStore:
    return SqlAlchemySessionStore(session)


async def get_session_service(
    store: Annotated[SessionStore, Depends(get_session_store)],
    blob_store: Annotated[BlobStore, Depends(get_blob_store)],
    cache: Annotated[SessionListCache, Depends(get_session_cache)],
) -> SessionService:
    return SessionService(
        store=store,
        blob_store=blob_store,
        cache=cache,
        voice_bucket=get_settings().voice_recordings_bucket,
    )


async def get_project_for_user(
    project_id: uuid.UUID,
    projects: Annotated[ProjectService, Depends(get_project_service)],
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> Project:
    """Load the project named in the path.

    Role checks happen in the services; this only resolves the row.

    Raises:
        NotFoundError: If the project does not exist.
    """
    return await projects.get_project(project_id)
