"""
Object storage for persisted API specs.

Wraps a MinIO (S3 compatible) client behind a small async interface. The
blocking client calls run in worker threads.
"""

import asyncio
import io
from typing import List, Optional

import structlog
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from servelane.config.settings import StorageSettings
from servelane.core.exceptions import ObjectStorageError

logger = structlog.get_logger(__name__)

_MISSING_KEY_CODES = {"NoSuchKey", "NoSuchObject"}

# S3 errors plus transport failures (connection refused, retries exhausted) from urllib3
_CLIENT_ERRORS = (S3Error, HTTPError)


class ObjectStore:
    """Put, get and prefix-delete of objects in a bucket."""

    def __init__(self, client: Minio):
        """Initialize the store around a MinIO client."""
        self.client = client

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "ObjectStore":
        """Build a store from storage settings."""
        client = Minio(
            settings.endpoint,
            access_key=settings.access_key,
            secret_key=settings.secret_key.get_secret_value() if settings.secret_key else None,
            session_token=settings.session_token,
            secure=settings.secure,
            region=settings.region,
        )
        return cls(client)

    async def put(self, data: bytes, bucket: str, key: str, content_type: str = "application/json") -> None:
        """Upload ``data`` to ``bucket/key``, overwriting any existing object."""
        def _put() -> None:
            self.client.put_object(bucket, key, io.BytesIO(data), length=len(data), content_type=content_type)

        try:
            await asyncio.to_thread(_put)
        except _CLIENT_ERRORS as e:
            raise ObjectStorageError(f"upload s3://{bucket}/{key}", e) from e

        logger.debug("Object uploaded", bucket=bucket, key=key, size=len(data))

    async def get(self, bucket: str, key: str) -> Optional[bytes]:
        """Download ``bucket/key``; returns None if the object does not exist."""
        def _get() -> bytes:
            response = self.client.get_object(bucket, key)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        try:
            return await asyncio.to_thread(_get)
        except _CLIENT_ERRORS as e:
            if isinstance(e, S3Error) and e.code in _MISSING_KEY_CODES:
                return None
            raise ObjectStorageError(f"download s3://{bucket}/{key}", e) from e

    async def delete_dir(self, bucket: str, prefix: str, recursive: bool = True) -> int:
        """Delete every object under ``prefix``; returns the number of objects removed."""
        prefix = prefix.rstrip("/") + "/"

        def _delete() -> int:
            keys: List[str] = [
                obj.object_name
                for obj in self.client.list_objects(bucket, prefix=prefix, recursive=recursive)
                if not obj.is_dir
            ]
            if not keys:
                return 0
            # remove_objects is lazy; errors only surface while iterating
            errors = list(self.client.remove_objects(bucket, [DeleteObject(key) for key in keys]))
            if errors:
                raise ObjectStorageError(
                    f"delete s3://{bucket}/{prefix}",
                    RuntimeError(f"{len(errors)} objects could not be deleted: {errors[0]}"),
                )
            return len(keys)

        try:
            deleted = await asyncio.to_thread(_delete)
        except _CLIENT_ERRORS as e:
            raise ObjectStorageError(f"delete s3://{bucket}/{prefix}", e) from e

        logger.info("Objects deleted", bucket=bucket, prefix=prefix, count=deleted)
        return deleted


__all__ = ["ObjectStore"]
