"""Account management through FastAPI-Users.

Registration, login and password reset are handled by FastAPI-Users; this
module supplies the pieces it needs: the read/create/update schemas, the
SQLAlchemy user store and a :class:`UserManager` that signs its tokens with
``Settings.secret_key``.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Optional, Union

import structlog
from fastapi import Depends, Request
from fastapi_users import BaseUserManager, InvalidPasswordException, UUIDIDMixin, schemas
from fastapi_users.db import SQLAlchemyUserDatabase
from sqlalchemy.ext.asyncio import AsyncSession

from field_observatory.config.settings import get_settings
from field_observatory.core.database import get_db
from field_observatory.core.models.users import User

logger = structlog.get_logger(__name__)

MIN_PASSWORD_LENGTH = 8


class UserRead(schemas.BaseUser[uuid.UUID]):
    full_name: Optional[str] = None


class UserCreate(schemas.BaseUserCreate):
    full_name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    full_name: Optional[str] = None


class UserManager(UUIDIDMixin, BaseUserManager[User, uuid.UUID]):
    """Hooks and token secrets for the FastAPI-Users routers."""

    @property
    def reset_password_token_secret(self) -> str:
        return get_settings().secret_key

    @property
    def verification_token_secret(self) -> str:
        return get_settings().secret_key

    async def validate_password(
        self, password: str, user: Union[UserCreate, User]
    ) -> None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidPasswordException(
                reason=f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
            )
        if user.email and user.email.lower() in password.lower():
            raise InvalidPasswordException(reason="Password must not contain the e-mail address.")

    async def on_after_register(self, user: User, request: Optional[Request] = None) -> None:
        logger.info("user.registered", user_id=str(user.id))

    async def on_after_forgot_password(
        self, user: User, token: str, request: Optional[Request] = None
    ) -> None:
        # TODO: e-mail the reset link; for now it can only be issued by an operator.
        logger.info("user.password_reset_requested", user_id=str(user.id))

    async def on_after_reset_password(self, user: User, request: Optional[Request] = None) -> None:
        logger.info("user.password_reset", user_id=str(user.id))


async def get_user_db(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[SQLAlchemyUserDatabase, None]:
    yield SQLAlchemyUserDatabase(session, User)


async def get_user_manager(
    user_db: SQLAlchemyUserDatabase = Depends(get_user_db),
) -> AsyncGenerator[UserManager, None]:
    yield UserManager(user_db)
