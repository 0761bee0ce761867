"""Business logic for committing uploaded files.

An upload goes through four steps per file:

1. the bytes are staged under a temp name in the owner's directory,
2. a File row is inserted pointing at the temp blob,
3. the blob is renamed to '{stem}-{file_id}{ext}',
4. the row is patched with the final path.

Steps 2-4 run in one metadata transaction. If any of them fails the row
is rolled back and both blobs are discarded, and only that file is
reported as failed.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, final

from django.conf import settings

from server.apps.drive.exceptions import (
    BlobIOError,
    DriveError,
    InvalidNameError,
    NotFoundError,
    StoreError,
    UploadError,
)
from server.apps.drive.infrastructure.metadata import (
    build_final_path,
    build_temp_path,
    detect_mime_type,
    is_owner_path,
    normalize_entry_name,
)
from server.apps.drive.infrastructure.metadata_store import MetadataStore
from server.apps.drive.infrastructure.storage import BlobStore
from server.apps.drive.models import File

logger = logging.getLogger(__name__)

_UNNAMED_UPLOAD: Final = 'upload'


@final
@dataclass(frozen=True, slots=True)
class StagedUpload:
    """Incoming file already written to a temp blob by the transport."""

    temp_path: str
    original_name: str
    size_bytes: int
    mime_type: str


@final
@dataclass(frozen=True, slots=True)
class CommittedFile:
    """Summary of a committed file returned to the caller."""

    id: int
    name: str
    size_bytes: int
    mime_type: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: File) -> 'CommittedFile':
        """Build the summary from a File row."""
        return cls(
            id=record.id,
            name=record.name,
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            created_at=record.created_at,
        )

    def as_dict(self) -> dict[str, Any]:
        """Plain representation."""
        return {
            'id': self.id,
            'name': self.name,
            'size_bytes': self.size_bytes,
            'mime_type': self.mime_type,
            'created_at': self.created_at,
        }


@final
@dataclass(frozen=True, slots=True)
class UploadResult:
    """Outcome of committing one file of a batch."""

    original_name: str
    committed: CommittedFile | None = None
    error: UploadError | None = None

    @property
    def ok(self) -> bool:
        """Whether the file was committed."""
        return self.committed is not None

    def as_dict(self) -> dict[str, Any]:
        """Plain representation with an error tag for failures."""
        if self.committed is not None:
            return {'ok': True, 'file': self.committed.as_dict()}
        return {
            'ok': False,
            'name': self.original_name,
            'error': 'upload_error',
            'reason': self.error.reason if self.error else '',
        }


@final
class UploadPipeline:
    """Stages and commits uploaded files for one metadata/blob store pair."""

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        max_upload_bytes: int | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            metadata: Metadata store for File rows.
            blobs: Blob store holding the payloads.
            max_upload_bytes: Per-file size limit, defaults to
                settings.DRIVE_MAX_UPLOAD_BYTES.
        """
        self._metadata = metadata
        self._blobs = blobs
        if max_upload_bytes is None:
            max_upload_bytes = settings.DRIVE_MAX_UPLOAD_BYTES
        self._max_upload_bytes = max_upload_bytes

    def stage_upload(
        self,
        owner_id: int,
        content: Any,
        name: str | None = None,
        content_type: str | None = None,
    ) -> StagedUpload:
        """Write incoming bytes to a temp blob in the owner's directory.

        This is the transport step: it runs before commit_upload and
        only needs the raw content.

        Args:
            owner_id: Owner's user ID.
            content: Django File or UploadedFile with the bytes.
            name: Original filename, defaults to content.name.
            content_type: MIME type claimed by the client, defaults to
                content.content_type when present.

        Returns:
            StagedUpload describing the temp blob.

        Raises:
            BlobIOError: If the blob cannot be written.
        """
        original_name = name or _base_name(content) or _UNNAMED_UPLOAD
        claimed_type = content_type or getattr(content, 'content_type', None)
        temp_path = self._blobs.save(
            build_temp_path(owner_id, original_name),
            content,
        )
        return StagedUpload(
            temp_path=temp_path,
            original_name=original_name,
            size_bytes=content.size,
            mime_type=detect_mime_type(original_name, claimed_type),
        )

    def commit_upload(
        self,
        owner_id: int,
        folder_id: int,
        staged: Sequence[StagedUpload],
    ) -> list[UploadResult]:
        """Commit a batch of staged uploads into a folder.

        Files are committed independently: a failure is reported in
        that file's result and the rest of the batch continues. Files
        committed before a failure stay committed.

        Args:
            owner_id: Owner's user ID.
            folder_id: Target folder.
            staged: Staged uploads in request order.

        Returns:
            One UploadResult per staged upload, in the same order.

        Raises:
            NotFoundError: If the folder is absent or foreign.
            StoreError: If the folder cannot be loaded. In both cases
                all staged temp blobs are discarded first.
        """
        try:
            self._metadata.get_folder(owner_id, folder_id)
        except DriveError:
            logger.warning(
                'Upload target folder %d unavailable for owner %d, '
                'discarding %d staged files',
                folder_id,
                owner_id,
                len(staged),
            )
            for upload in staged:
                self._discard_temp(owner_id, upload.temp_path)
            raise

        results = [
            self._commit_one(owner_id, folder_id, upload)
            for upload in staged
        ]
        committed = sum(1 for result in results if result.ok)
        if committed:
            self._touch_target(owner_id, folder_id)

        logger.info(
            'Upload to folder %d finished: %d committed, %d failed',
            folder_id,
            committed,
            len(results) - committed,
        )
        return results

    def _commit_one(
        self,
        owner_id: int,
        folder_id: int,
        upload: StagedUpload,
    ) -> UploadResult:
        """Run insert, rename and patch for a single staged upload."""
        rejection = self._check_staged(owner_id, upload)
        if rejection is not None:
            self._discard_temp(owner_id, upload.temp_path)
            return _failed(upload, rejection)

        final_path: str | None = None
        try:
            with self._metadata.atomic():
                record = self._metadata.insert_file(
                    owner_id=owner_id,
                    folder_id=folder_id,
                    name=normalize_entry_name(upload.original_name),
                    storage_path=upload.temp_path,
                    size_bytes=upload.size_bytes,
                    mime_type=upload.mime_type,
                )
                final_path = build_final_path(
                    upload.temp_path,
                    upload.original_name,
                    record.id,
                )
                self._blobs.move_object(upload.temp_path, final_path)
                record = self._metadata.set_file_storage_path(
                    owner_id,
                    record.id,
                    final_path,
                )
        except (
            StoreError,
            BlobIOError,
            NotFoundError,
            InvalidNameError,
        ) as error:
            logger.exception(
                'Commit failed, rolling back upload: %s',
                upload.temp_path,
            )
            self._discard_temp(owner_id, upload.temp_path)
            if final_path is not None:
                self._blobs.discard(final_path)
            return _failed(upload, str(error))

        logger.info(
            'File committed: %s (ID: %d, path: %s)',
            record.name,
            record.id,
            record.storage_path,
        )
        return UploadResult(
            original_name=upload.original_name,
            committed=CommittedFile.from_record(record),
        )

    def _check_staged(self, owner_id: int, upload: StagedUpload) -> str | None:
        """Reason to reject a staged upload before touching metadata."""
        if not is_owner_path(owner_id, upload.temp_path):
            return 'staged blob is outside the owner directory'
        if upload.size_bytes > self._max_upload_bytes:
            return (
                f'file is larger than the {self._max_upload_bytes} '
                'bytes upload limit'
            )
        return None

    def _touch_target(self, owner_id: int, folder_id: int) -> None:
        """Bump the target folder, committed files stand either way."""
        try:
            self._metadata.touch_folder(owner_id, folder_id)
        except StoreError:
            logger.exception(
                'Failed to touch folder %d after upload',
                folder_id,
            )

    def _discard_temp(self, owner_id: int, temp_path: str) -> None:
        """Discard a staged blob, refusing to touch foreign paths."""
        if not is_owner_path(owner_id, temp_path):
            logger.warning(
                'Not discarding staged blob outside owner %d: %s',
                owner_id,
                temp_path,
            )
            return
        self._blobs.discard(temp_path)


def _failed(upload: StagedUpload, reason: str) -> UploadResult:
    error = UploadError(upload.original_name, reason)
    logger.warning('%s', error)
    return UploadResult(original_name=upload.original_name, error=error)


def _base_name(content: Any) -> str | None:
    name = getattr(content, 'name', None)
    if not name:
        return None
    return str(name).replace('\\', '/').rsplit('/', 1)[-1]
