"""Health check route handlers.

``GET /health``
    Process liveness.  No I/O.

``GET /api/health``
    Checks the database (``SELECT 1``) and the object store (bucket lookup).
    Always returns HTTP 200; ``status`` is ``"ok"`` or ``"degraded"``.
"""

from __future__ import annotations

import asyncio

import sqlalchemy as sa
import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from minio import Minio  # type: ignore[import-untyped]
from minio.error import S3Error  # type: ignore[import-untyped]
from sqlalchemy.exc import SQLAlchemyError
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from field_observatory.config.settings import get_settings
from field_observatory.core.database import session_scope

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["system"])


async def _check_database() -> str:
    try:
        async with session_scope() as session:
            await session.execute(sa.text("SELECT 1"))
        return "ok"
    except (SQLAlchemyError, OSError) as exc:
        logger.error("health.database_unreachable", error=str(exc))
        return "error"


async def _check_object_store() -> str:
    settings = get_settings()
    client = Minio(
        settings.minio_endpoint,
        access_key=settings.minio_root_user,
        secret_key=settings.minio_root_password,
        secure=settings.minio_secure,
    )
    try:
        exists = await asyncio.to_thread(client.bucket_exists, settings.voice_recordings_bucket)
    except (S3Error, Urllib3HTTPError, OSError) as exc:
        logger.error("health.object_store_unreachable", error=str(exc))
        return "error"
    return "ok" if exists else "missing_bucket"


@router.get("/health")
async def health() -> JSONResponse:
    """Minimal liveness probe for load balancers."""
    return JSONResponse({"status": "ok"})


@router.get("/api/health")
async def deep_health() -> JSONResponse:
    database, object_store = await asyncio.gather(_check_database(), _check_object_store())
    overall = "ok" if database == "ok" and object_store == "ok" else "degraded"
    return JSONResponse(
        {
            "status": overall,
            "database": database,
            "object_store": object_store,
        }
    )
