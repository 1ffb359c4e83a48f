"""Runtime configuration for Field Observatory.

Everything configurable is a field on :class:`Settings`, read from the process
environment or a ``.env`` file in the working directory.  Other modules go
through :func:`get_settings` and never read ``os.environ`` themselves.

Usage::

    from field_observatory.config.settings import get_settings

    bucket = get_settings().voice_recordings_bucket
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Field Observatory settings.

    ``database_url`` and ``secret_key`` have no default; the application
    refuses to start until both are set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- PostgreSQL --------------------------------------------------------

    database_url: str
    """asyncpg DSN, e.g. ``postgresql+asyncpg://observer:pw@db:5432/field_observatory``."""

    db_pool_size: int = 5
    """Connections kept open by the engine pool."""

    db_max_overflow: int = 10
    """Extra connections the pool may open under load."""

    # -- Authentication ----------------------------------------------------

    secret_key: str
    """Signs JWTs and password-reset tokens."""

    access_token_expire_minutes: int = 60 * 12
    """JWT lifetime.  A field shift fits in one token."""

    # -- Voice recordings (MinIO) -----------------------------------------

    minio_endpoint: str = "localhost:9000"
    """``host:port`` of the object store, no scheme."""

    minio_root_user: str = "minioadmin"
    minio_root_password: str = "minioadmin"
    minio_secure: bool = False

    voice_recordings_bucket: str = "voice-recordings"
    """Bucket the clients upload recordings to; cleanup deletes from here."""

    # -- Service -----------------------------------------------------------

    app_name: str = "Field Observatory"
    debug: bool = False

    log_level: str = "INFO"
    """DEBUG switches the log output from JSON to the coloured console renderer."""

    allowed_origins: list[str] = ["http://localhost:3000"]
    """CORS origins of the web and mobile clients."""

    export_timezone: str = "America/Lima"
    """IANA zone for day boundaries in session listings and for export dates."""

    session_cache_max_projects: int = 256
    """Projects whose session listings are kept in the in-process cache."""


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide :class:`Settings`.

    Tests that change the environment call ``get_settings.cache_clear()``.
    """
    return Settings()
