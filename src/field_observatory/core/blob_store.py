"""Object storage for voice recordings.

Only deletion is needed server-side: recordings are uploaded by the client
straight to the bucket, and the answer stores the public URL wrapped as
``[Audio: <url>]``.  When an answer is replaced, or its session or project
deleted, the recording is removed on a best-effort basis through
:func:`delete_recordings`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Iterable
from functools import lru_cache
from typing import Optional

import structlog
from minio import Minio  # type: ignore[import-untyped]
from minio.error import MinioException, S3Error  # type: ignore[import-untyped]
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from field_observatory.config.settings import get_settings
from field_observatory.core.exceptions import StoreUnavailableError
from field_observatory.core.response_formatter import voice_blob_key

logger = structlog.get_logger(__name__)

DEFAULT_VOICE_BUCKET = "voice-recordings"


class BlobStore(ABC):
    """Minimal object-storage interface used by the session service."""

    @abstractmethod
    async def delete_blob(self, bucket: str, key: str) -> None:
        """Delete one object.

        Raises:
            StoreUnavailableError: If the object store refused or could not be
                reached.  Deleting a missing key is not an error.
        """


class MinioBlobStore(BlobStore):
    """:class:`BlobStore` backed by a MinIO (S3-compatible) server.

    The ``minio`` client is synchronous, so calls run in a worker thread.

    Args:
        client: A configured :class:`minio.Minio` client.
    """

    def __init__(self, client: Minio) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> MinioBlobStore:  # type: ignore[no-untyped-def]
        return cls(
            Minio(
                settings.minio_endpoint,
                access_key=settings.minio_root_user,
                secret_key=settings.minio_root_password,
                secure=settings.minio_secure,
            )
        )

    async def delete_blob(self, bucket: str, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.remove_object, bucket, key)
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchObject"):
                return
            raise StoreUnavailableError(
                f"Could not delete {bucket}/{key}: {exc.code}",
                operation="delete_blob",
            ) from exc
        except MinioException as exc:
            # ServerError / InvalidResponseError: a non-S3 reply, e.g. a proxy 5xx.
            raise StoreUnavailableError(
                f"Object storage rejected delete of {bucket}/{key}: {exc}",
                operation="delete_blob",
            ) from exc
        except (Urllib3HTTPError, OSError) as exc:
            raise StoreUnavailableError(
                f"Object storage unreachable while deleting {bucket}/{key}",
                operation="delete_blob",
            ) from exc
        logger.info("blob.deleted", bucket=bucket, key=key)


@lru_cache
def get_blob_store() -> BlobStore:
    """Process-wide MinIO-backed store; a FastAPI dependency."""
    return MinioBlobStore.from_settings(get_settings())


async def delete_recordings(
    blob_store: Optional[BlobStore],
    bucket: str,
    urls: Iterable[Optional[str]],
) -> int:
    """Remove the recordings behind *urls*, ignoring failures.

    A failed delete is logged and the remaining recordings are still
    attempted; callers go on to delete their rows either way.

    Returns:
        Number of recordings removed.
    """
    if blob_store is None:
        return 0
    removed = 0
    for url in urls:
        key = voice_blob_key(url) if url else ""
        if not key:
            continue
        try:
            await blob_store.delete_blob(bucket, key)
        except StoreUnavailableError as exc:
            logger.warning("blob.cleanup_failed", bucket=bucket, key=key, error=str(exc))
            continue
        removed += 1
    return removed
