"""Sign-in, registration and profile routes, provided by FastAPI-Users.

The web client signs in through ``/auth/cookie/login`` and receives an
HttpOnly ``access_token`` cookie.  The mobile app uses
``/auth/bearer/login`` and sends ``Authorization: Bearer <token>``.  Both
backends issue the same JWT, so either one accepts a token from the other.

Mounted by ``api/main.py``:

==========================  ==========================================
``/auth/cookie/login``      POST, also ``/logout``
``/auth/bearer/login``      POST, also ``/logout``
``/auth/register``          POST
``/auth/forgot-password``   POST, then ``/auth/reset-password``
``/users/me``               GET, PATCH
==========================  ==========================================
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter
from fastapi_users import FastAPIUsers
from fastapi_users.authentication import (
    AuthenticationBackend,
    BearerTransport,
    CookieTransport,
    JWTStrategy,
)

from field_observatory.config.settings import get_settings
from field_observatory.core.models.users import User
from field_observatory.core.user_manager import (
    UserCreate,
    UserRead,
    UserUpdate,
    get_user_manager,
)


def get_jwt_strategy() -> JWTStrategy:
    # Read per call so tests that swap settings get the new secret.
    settings = get_settings()
    return JWTStrategy(
        secret=settings.secret_key,
        lifetime_seconds=settings.access_token_expire_minutes * 60,
    )


def _backends() -> list[AuthenticationBackend]:
    settings = get_settings()
    cookie = CookieTransport(
        cookie_name="access_token",
        cookie_max_age=settings.access_token_expire_minutes * 60,
        cookie_secure=not settings.debug,
        cookie_httponly=True,
        cookie_samesite="lax",
    )
    bearer = BearerTransport(tokenUrl="/auth/bearer/login")
    return [
        AuthenticationBackend(name=name, transport=transport, get_strategy=get_jwt_strategy)
        for name, transport in (("cookie", cookie), ("bearer", bearer))
    ]


backends = _backends()

fastapi_users: FastAPIUsers[User, uuid.UUID] = FastAPIUsers(get_user_manager, backends)

auth_router = APIRouter()
for backend in backends:
    auth_router.include_router(
        fastapi_users.get_auth_router(backend),
        prefix=f"/{backend.name}",
        tags=[f"auth:{backend.name}"],
    )
auth_router.include_router(
    fastapi_users.get_register_router(UserRead, UserCreate), tags=["auth"]
)
auth_router.include_router(fastapi_users.get_reset_password_router(), tags=["auth"])

users_router = APIRouter()
users_router.include_router(
    fastapi_users.get_users_router(UserRead, UserUpdate), tags=["users"]
)
