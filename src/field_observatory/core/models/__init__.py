"""SQLAlchemy ORM models for Field Observatory.

All models are imported here so that:
1. Alembic autogenerate can discover them via Base.metadata.
2. Application code can do ``from field_observatory.core.models import Project``
   without knowing which sub-module a model lives in.
3. SQLAlchemy's relationship resolution finds all mapper targets at
   import time.
"""

from __future__ import annotations

from field_observatory.core.models.base import Base, TimestampMixin
from field_observatory.core.models.project import Project, ProjectUser
from field_observatory.core.models.questions import ObservationOption
from field_observatory.core.models.sessions import Observation, ObservationSession
from field_observatory.core.models.users import User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "Project",
    "ProjectUser",
    "ObservationOption",
    "ObservationSession",
    "Observation",
]
