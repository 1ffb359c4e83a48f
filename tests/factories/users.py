"""Factory Boy factory for the User model.

Usage::

    from tests.factories.users import UserFactory

    user = UserFactory.build(email="observer@example.com")
"""

from __future__ import annotations

import uuid

import factory

from field_observatory.core.models.users import User


class UserFactory(factory.Factory):
    """Transient :class:`~field_observatory.core.models.users.User` instances."""

    class Meta:
        model = User

    id = factory.LazyFunction(uuid.uuid4)
    email = factory.Sequence(lambda n: f"observer{n}@example.com")
    full_name = factory.Faker("name")
    hashed_password = None
    is_active = True
