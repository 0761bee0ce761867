"""Blob storage backends for file payloads.

Both backends are regular Django storages, so they can be configured in
STORAGES and swapped without touching the hierarchy logic, which only
depends on the BlobStore protocol below.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar, Protocol, final, override

from botocore.exceptions import BotoCoreError, ClientError
from django.core.files.base import File as DjangoFile
from django.core.files.storage import FileSystemStorage
from storages.backends.s3 import S3Storage

from server.apps.drive.exceptions import BlobIOError

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """Operations the drive core needs from a blob backend."""

    def save(
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Write content and return the name actually used."""

    def move_object(self, source: str, destination: str) -> None:
        """Relocate a blob."""

    def delete(self, name: str) -> None:
        """Delete a blob."""

    def discard(self, name: str) -> bool:
        """Delete a blob, never raising."""

    def exists(self, name: str) -> bool:
        """Check whether a blob exists."""

    def open_blob(self, name: str) -> DjangoFile:
        """Open a blob for binary reading."""

    def listdir(self, path: str) -> tuple[list[str], list[str]]:
        """List directories and files under a path."""

    def get_modified_time(self, name: str) -> datetime:
        """Last modification time of a blob."""


class BlobStorageMixin:
    """Logging and error translation shared by the blob backends.

    Backend specific failures (listed in _io_errors) are logged and
    re-raised as BlobIOError so callers handle a single error type.
    """

    _io_errors: ClassVar[tuple[type[Exception], ...]] = (OSError,)

    def save(
        self,
        name: str,
        content: Any,
        max_length: int | None = None,
    ) -> str:
        """Save blob with error handling and logging.

        Args:
            name: Storage path for the blob.
            content: Blob content (file-like object).
            max_length: Optional maximum length for the filename.

        Returns:
            Actual storage path used (may differ from name if conflicts).

        Raises:
            BlobIOError: If the backend write fails.
        """
        try:
            logger.info('Writing blob to storage: %s', name)
            saved_name = super().save(  # type: ignore[misc]
                name,
                content,
                max_length,
            )
        except self._io_errors as error:
            logger.exception('Failed to write blob to storage: %s', name)
            raise BlobIOError('save', name) from error
        logger.info('Successfully wrote blob: %s', saved_name)
        return saved_name

    def delete(self, name: str) -> None:
        """Delete blob with error handling and logging.

        Args:
            name: Storage path of blob to delete.

        Raises:
            BlobIOError: If the backend delete fails.
        """
        try:
            logger.info('Deleting blob from storage: %s', name)
            super().delete(name)  # type: ignore[misc]
        except self._io_errors as error:
            logger.exception('Failed to delete blob from storage: %s', name)
            raise BlobIOError('delete', name) from error
        logger.info('Successfully deleted blob: %s', name)

    def discard(self, name: str) -> bool:
        """Delete a blob on a best-effort basis.

        Used for rollback of failed uploads and for cleanup after
        metadata deletion. If deletion fails, the error is logged but
        not raised; the blob is left for the orphan cleanup command.

        Args:
            name: Storage path of blob to delete.

        Returns:
            True if the blob is gone, False if it could not be removed.
        """
        try:
            if not self.exists(name):  # type: ignore[attr-defined]
                logger.debug('Blob already absent: %s', name)
                return True
            self.delete(name)
        except (BlobIOError, *self._io_errors):
            logger.exception('Failed to discard blob (orphaned): %s', name)
            return False
        return True

    def open_blob(self, name: str) -> DjangoFile:
        """Open a blob for binary reading.

        Args:
            name: Storage path of the blob.

        Returns:
            Open Django File object, the caller closes it.

        Raises:
            BlobIOError: If the blob is missing or unreadable.
        """
        try:
            return self.open(name, 'rb')  # type: ignore[attr-defined]
        except self._io_errors as error:
            logger.exception('Failed to open blob: %s', name)
            raise BlobIOError('open', name) from error


@final
class FileSystemBlobStorage(BlobStorageMixin, FileSystemStorage):
    """Local filesystem backend for blobs.

    Blobs live below the storage location in one directory per owner.
    """

    def move_object(self, source: str, destination: str) -> None:
        """Durably rename a blob inside the storage location.

        Uses an atomic os.replace and then syncs the directory entry,
        so a completed move survives a crash.

        Args:
            source: Source storage path.
            destination: Destination storage path.

        Raises:
            BlobIOError: If the rename fails.
        """
        try:
            logger.info('Moving blob: %s -> %s', source, destination)
            source_path = Path(self.path(source))
            destination_path = Path(self.path(destination))
            destination_path.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source_path, destination_path)
            _fsync_directory(destination_path.parent)
        except OSError as error:
            logger.exception('Move failed: %s -> %s', source, destination)
            raise BlobIOError('move', source) from error
        logger.info('Moved blob: %s -> %s', source, destination)

    @override
    def listdir(self, path: str) -> tuple[list[str], list[str]]:
        """List a directory, treating a missing one as empty."""
        if not Path(self.path(path)).is_dir():
            return [], []
        return super().listdir(path)


@final
class S3BlobStorage(BlobStorageMixin, S3Storage):
    """S3-compatible backend for blobs (MinIO, R2, AWS)."""

    _io_errors = (OSError, BotoCoreError, ClientError)

    def move_object(self, source: str, destination: str) -> None:
        """Move/rename an object in S3 storage.

        S3 doesn't support native rename, so this performs a server-side
        copy followed by deletion of the source.

        Note: This operation is not atomic. If copy succeeds but delete
        fails, both objects will exist (source becomes orphaned). The
        orphan cleanup command removes it later, no data is lost.

        Args:
            source: Source storage path.
            destination: Destination storage path.

        Raises:
            BlobIOError: If copy or delete fails.
        """
        try:
            logger.info('Moving blob: %s -> %s', source, destination)
            copy_source = {
                'Bucket': self.bucket_name,
                'Key': source,
            }
            self.bucket.copy(copy_source, destination)
        except self._io_errors as error:
            logger.exception('Move failed: %s -> %s', source, destination)
            raise BlobIOError('move', source) from error
        # Delete source after successful copy
        self.discard(source)
        logger.info('Moved blob: %s -> %s', source, destination)

    @override
    def exists(self, name: str) -> bool:
        """Check whether an object exists.

        Args:
            name: Storage path.

        Returns:
            True if the object exists.

        Raises:
            BlobIOError: If the backend cannot be queried.
        """
        try:
            return super().exists(name)
        except self._io_errors as error:
            raise BlobIOError('exists', name) from error


def _fsync_directory(directory: Path) -> None:
    """Flush a directory entry to disk where the platform allows it."""
    if not hasattr(os, 'O_DIRECTORY'):
        return
    descriptor = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    try:
        os.fsync(descriptor)
    finally:
        os.close(descriptor)
