"""The ``users`` table.

Accounts carry no global privileges.  What a user may do is decided per
project, from ``projects.created_by`` and ``project_users``
(see :mod:`field_observatory.core.roles`).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column

from field_observatory.core.models.base import Base


class User(Base):
    """A field worker or project owner who can sign in."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        server_default=sa.text("gen_random_uuid()"),
    )
    email: Mapped[str] = mapped_column(sa.String(320), unique=True, index=True)
    hashed_password: Mapped[Optional[str]] = mapped_column(sa.String(1024))
    full_name: Mapped[Optional[str]] = mapped_column(sa.String(200))
    is_active: Mapped[bool] = mapped_column(server_default=sa.true())
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=sa.func.now()
    )

    # FastAPI-Users reads these two flags; neither is stored.
    @property
    def is_superuser(self) -> bool:
        return False

    @property
    def is_verified(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"<User {self.email!r}>"
