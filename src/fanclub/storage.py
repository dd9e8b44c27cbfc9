"""
File storage with disk abstraction.

Supports the local public disk (default) and AWS S3.
Disks are looked up by driver name, the same names stored on
attachments and in the `filesystems.defaultFilesystemDriver` setting.
"""

from __future__ import annotations

import asyncio
import posixpath
from abc import ABC, abstractmethod
from collections.abc import Mapping
from pathlib import Path, PurePosixPath
from urllib.parse import parse_qs, unquote, urlsplit

import structlog
from botocore.exceptions import ClientError

from fanclub.config import Settings, get_settings

logger = structlog.get_logger()

DRIVER_PUBLIC = "public"
DRIVER_S3 = "s3"

# Query parameters that mark a URL as temporary (AWS SigV4 / SigV2 / CloudFront)
PRESIGNED_QUERY_PARAMS = frozenset(
    {"x-amz-signature", "x-amz-credential", "x-amz-expires", "signature", "expires", "key-pair-id"}
)


class StorageError(Exception):
    """Raised for unknown disks or paths a disk refuses to touch."""


class BaseDisk(ABC):
    """Abstract base class for storage disks."""

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """Delete a stored file. Deleting a missing file is not an error."""
        ...

    @abstractmethod
    async def exists(self, path: str) -> bool:
        ...


class LocalDisk(BaseDisk):
    """Files under a root directory on the local filesystem.

    Filesystem calls run in a worker thread so they don't block the event loop.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            msg = f"Path escapes storage root: {path}"
            raise StorageError(msg)
        return target

    def _delete_file(self, path: str) -> bool:
        target = self._resolve(path)
        if not target.is_file():
            return False
        target.unlink(missing_ok=True)
        return True

    def _is_file(self, path: str) -> bool:
        return self._resolve(path).is_file()

    async def delete(self, path: str) -> bool:
        deleted = await asyncio.to_thread(self._delete_file, path)
        if deleted:
            logger.info("file_deleted", path=path, disk=DRIVER_PUBLIC)
        return deleted

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._is_file, path)


class S3Disk(BaseDisk):
    """Objects in a single S3 bucket, accessed with aioboto3."""

    def __init__(self, bucket: str, region: str) -> None:
        self.bucket = bucket
        self.region = region

    def _client(self):  # noqa: ANN202
        import aioboto3

        session = aioboto3.Session()
        return session.client("s3", region_name=self.region)

    async def delete(self, path: str) -> bool:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self.bucket, Key=path.lstrip("/"))
        logger.info("file_deleted", path=path, disk=DRIVER_S3, bucket=self.bucket)
        return True

    async def exists(self, path: str) -> bool:
        async with self._client() as s3:
            try:
                await s3.head_object(Bucket=self.bucket, Key=path.lstrip("/"))
            except ClientError as e:
                if e.response["Error"]["Code"] in ("404", "NoSuchKey"):
                    return False
                raise
        return True


def _create_disks(settings: Settings) -> dict[str, BaseDisk]:
    """Create every disk the configuration knows about."""
    disks: dict[str, BaseDisk] = {DRIVER_PUBLIC: LocalDisk(settings.storage_public_root)}
    if settings.storage_s3_bucket:
        disks[DRIVER_S3] = S3Disk(bucket=settings.storage_s3_bucket, region=settings.storage_s3_region)
    return disks


class StorageManager:
    """Resolves driver names to disks."""

    def __init__(self, disks: Mapping[str, BaseDisk] | None = None) -> None:
        self.disks = dict(disks) if disks is not None else _create_disks(get_settings())

    def disk(self, name: str) -> BaseDisk:
        """
        Get the disk registered under `name`.

        Raises:
            StorageError: If no disk is configured under that name.
        """
        disk = self.disks.get(name)
        if disk is None:
            msg = f"Unsupported storage disk: {name}"
            raise StorageError(msg)
        return disk


def basename(value: str) -> str:
    """Final path segment of a stored path or URL, query string included."""
    return posixpath.basename(value.rstrip("/"))


def get_file_name_from_url(value: str | None) -> str | None:
    """
    Extract the bare file name from a stored path or URL.

    Returns None when the value is a pre-signed URL (its signature expires,
    so it must never be persisted) or when its final segment is not a file name.
    """
    if not value:
        return None
    try:
        parts = urlsplit(value)
    except ValueError:
        return None

    query_keys = {key.lower() for key in parse_qs(parts.query, keep_blank_values=True)}
    if query_keys & PRESIGNED_QUERY_PARAMS:
        return None

    name = PurePosixPath(unquote(parts.path)).name
    stem, dot, extension = name.rpartition(".")
    if not dot or not stem or not extension.isalnum():
        return None
    return name


# Module-level singleton
_storage_manager: StorageManager | None = None


def get_storage_manager() -> StorageManager:
    """Get or create the storage manager singleton."""
    global _storage_manager  # noqa: PLW0603
    if _storage_manager is None:
        _storage_manager = StorageManager()
    return _storage_manager


def reset_storage_manager() -> None:
    """Reset the storage manager singleton (for testing)."""
    global _storage_manager  # noqa: PLW0603
    _storage_manager = None
