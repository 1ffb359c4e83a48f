"""Factory Boy factories for test data generation.

The factories build transient ORM instances (nothing is persisted), which the
in-memory store double in ``tests/conftest.py`` holds directly.

Available factories
-------------------
UserFactory         - active user
ProjectFactory      - unfinished project with two agencies
QuestionFactory     - visible ``string`` question
SessionFactory      - active session started at ``T0``
ObservationFactory  - blank answer
"""

from __future__ import annotations

from tests.factories.projects import ProjectFactory, QuestionFactory
from tests.factories.sessions import ObservationFactory, SessionFactory
from tests.factories.users import UserFactory

__all__ = [
    "ObservationFactory",
    "ProjectFactory",
    "QuestionFactory",
    "SessionFactory",
    "UserFactory",
]
