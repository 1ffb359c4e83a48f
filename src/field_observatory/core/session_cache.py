"""In-process cache of session listings.

The data-entry view re-reads the sessions of one project/date/agency on every
navigation.  Listings are cached per project and keyed by ``(date, agency)``
inside it, so one :meth:`SessionListCache.invalidate` call drops every listing
of a project.  The session service calls it after each mutation (create,
finish, delete, answer upsert) and the project service calls it when a
project is deleted; nothing else expires entries.

Projects are evicted least-recently-used once ``max_projects`` is exceeded.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from collections.abc import Sequence
from datetime import date
from functools import lru_cache
from typing import Any, Optional

import structlog

from field_observatory.config.settings import get_settings

logger = structlog.get_logger(__name__)

ListingKey = tuple[date, Optional[str]]


class SessionListCache:
    """LRU cache of session listings keyed by project id.

    Args:
        max_projects: Number of projects kept before the least recently used
            one is evicted.
    """

    def __init__(self, max_projects: int = 256) -> None:
        if max_projects < 1:
            raise ValueError("max_projects must be at least 1")
        self._max_projects = max_projects
        self._entries: OrderedDict[uuid.UUID, dict[ListingKey, list[Any]]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._entries

    def get(self, project_id: uuid.UUID, day: date, agency: Optional[str]) -> Optional[list[Any]]:
        listings = self._entries.get(project_id)
        if listings is None:
            return None
        self._entries.move_to_end(project_id)
        cached = listings.get((day, agency))
        return list(cached) if cached is not None else None

    def put(
        self,
        project_id: uuid.UUID,
        day: date,
        agency: Optional[str],
        sessions: Sequence[Any],
    ) -> None:
        listings = self._entries.setdefault(project_id, {})
        listings[(day, agency)] = list(sessions)
        self._entries.move_to_end(project_id)
        while len(self._entries) > self._max_projects:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("session_cache.evicted", project_id=str(evicted))

    def invalidate(self, project_id: uuid.UUID) -> None:
        """Drop every cached listing of *project_id*."""
        if self._entries.pop(project_id, None) is not None:
            logger.debug("session_cache.invalidated", project_id=str(project_id))

    def clear(self) -> None:
        self._entries.clear()


@lru_cache
def get_session_cache() -> SessionListCache:
    """Process-wide listing cache; a FastAPI dependency."""
    return SessionListCache(max_projects=get_settings().session_cache_max_projects)
