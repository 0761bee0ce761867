"""Access façade between the drive core and its callers.

Callers (HTTP views, management commands) pass the caller identity and
request parameters and get an Outcome back. Domain errors never escape:
they are turned into an HTTP status and a message, and server-side
faults are logged with their traceback.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Final, final

from server.apps.drive.exceptions import (
    AuthorizationError,
    BlobIOError,
    ConflictError,
    DriveError,
    DuplicateNameError,
    HierarchyIntegrityError,
    InvalidNameError,
    NotFoundError,
    ProtectedEntityError,
    StoreError,
    UploadError,
)
from server.apps.drive.logic.hierarchy import (
    EntryKind,
    HierarchyEngine,
    build_engine,
)
from server.apps.drive.logic.upload_pipeline import UploadResult

logger = logging.getLogger(__name__)

_ENTRY_KINDS: Final = frozenset(('file', 'folder'))
_ORDERINGS: Final = frozenset(('name', 'recent'))

# Checked in order, so subclasses must come before their bases
_ERROR_STATUSES: Final[tuple[tuple[type[DriveError], HTTPStatus], ...]] = (
    (NotFoundError, HTTPStatus.NOT_FOUND),
    (DuplicateNameError, HTTPStatus.CONFLICT),
    (ConflictError, HTTPStatus.CONFLICT),
    (ProtectedEntityError, HTTPStatus.FORBIDDEN),
    (AuthorizationError, HTTPStatus.FORBIDDEN),
    (InvalidNameError, HTTPStatus.BAD_REQUEST),
)

_SERVER_FAULTS: Final = (HierarchyIntegrityError, StoreError, BlobIOError)


@final
@dataclass(frozen=True, slots=True)
class Outcome:
    """Caller-visible result of a façade call."""

    status: HTTPStatus
    message: str = ''
    payload: Any = None
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Whether the call fully succeeded."""
        return self.status < HTTPStatus.BAD_REQUEST and not self.errors


@final
class DriveFacade:
    """Entry point translating caller requests into engine calls."""

    def __init__(self, engine: HierarchyEngine | None = None) -> None:
        """Initialize the façade.

        Args:
            engine: Hierarchy engine, wired to Django defaults if omitted.
        """
        self._engine = engine or build_engine()

    def dashboard(
        self,
        owner_id: int | None,
        folder_id: int | None = None,
        ordering: str = 'name',
    ) -> Outcome:
        """Folder listing with breadcrumbs, root folder by default."""
        if ordering not in _ORDERINGS:
            return Outcome(
                HTTPStatus.BAD_REQUEST,
                f'Unknown ordering: {ordering}',
            )

        def load() -> dict[str, Any]:
            view = self._engine.resolve_folder(
                owner_id,
                folder_id,
                ordering,  # type: ignore[arg-type]
            )
            breadcrumbs = self._engine.resolve_ancestor_path(
                owner_id,
                view.folder.id,
            )
            return {
                **view.as_dict(),
                'breadcrumbs': [segment.as_dict() for segment in breadcrumbs],
            }

        return self._run(owner_id, load)

    def folder_tree(self, owner_id: int | None) -> Outcome:
        """Whole folder tree of the caller."""
        return self._run(
            owner_id,
            lambda: self._engine.build_folder_tree(owner_id).as_dict(),
        )

    def create_folder(
        self,
        owner_id: int | None,
        parent_id: int,
        name: str,
    ) -> Outcome:
        """Create a subfolder."""
        return self._run(
            owner_id,
            lambda: self._engine.create_subfolder(
                owner_id,
                parent_id,
                name,
            ).as_dict(),
            success_status=HTTPStatus.CREATED,
            success_message=f'Folder "{name.strip()}" created successfully.',
        )

    def rename(
        self,
        owner_id: int | None,
        entry_id: int,
        kind: str,
        new_name: str,
    ) -> Outcome:
        """Rename a file or folder."""
        if kind not in _ENTRY_KINDS:
            return _unknown_kind(kind)
        return self._run(
            owner_id,
            lambda: self._engine.rename_entry(
                owner_id,
                entry_id,
                _as_kind(kind),
                new_name,
            ).as_dict(),
            success_message='Renamed successfully.',
        )

    def delete(self, owner_id: int | None, entry_id: int, kind: str) -> Outcome:
        """Delete a file, or a folder with all its contents."""
        if kind not in _ENTRY_KINDS:
            return _unknown_kind(kind)

        def remove() -> dict[str, int]:
            report = self._engine.delete_entry(
                owner_id,
                entry_id,
                _as_kind(kind),
            )
            return {
                'folders_deleted': report.folders_deleted,
                'files_deleted': report.files_deleted,
            }

        if kind == 'file':
            message = 'File deleted successfully.'
        else:
            message = 'Folder and all contents deleted successfully.'
        return self._run(owner_id, remove, success_message=message)

    def upload_files(
        self,
        owner_id: int | None,
        folder_id: int,
        uploaded_files: Iterable[Any],
    ) -> Outcome:
        """Stage and commit uploaded files into a folder.

        Args:
            owner_id: Caller's user ID, None when anonymous.
            folder_id: Target folder.
            uploaded_files: Django UploadedFile (or File) objects.

        Returns:
            Outcome with one entry per file in the payload. Status is
            200 when every file committed and 207 otherwise.
        """
        if owner_id is None:
            return _unauthenticated()
        incoming = list(uploaded_files)
        if not incoming:
            return Outcome(HTTPStatus.BAD_REQUEST, 'No files uploaded.')

        pipeline = self._engine.pipeline
        # One slot per incoming file, None until its commit result is known
        slots: list[UploadResult | None] = []
        staged = []
        for uploaded in incoming:
            try:
                staged.append(pipeline.stage_upload(owner_id, uploaded))
            except BlobIOError:
                slots.append(_staging_failed(uploaded))
            else:
                slots.append(None)

        outcome = self._run(
            owner_id,
            lambda: self._engine.commit_upload(owner_id, folder_id, staged),
        )
        if not outcome.ok:
            return outcome

        commit_results = iter(outcome.payload)
        results = [
            slot if slot is not None else next(commit_results)
            for slot in slots
        ]
        errors = [
            f'{result.original_name}: {result.error.reason}'
            for result in results
            if result.error is not None
        ]
        committed = sum(1 for result in results if result.ok)
        status = HTTPStatus.OK if not errors else HTTPStatus.MULTI_STATUS
        return Outcome(
            status,
            f'{committed} of {len(incoming)} file(s) uploaded successfully.',
            payload={
                'folder_id': folder_id,
                'files': [result.as_dict() for result in results],
            },
            errors=errors,
        )

    def download(self, owner_id: int | None, file_id: int) -> Outcome:
        """Open a file for streaming.

        The payload holds the file metadata and a 'chunks' iterator.
        """

        def open_stream() -> dict[str, Any]:
            record = self._engine.get_file(owner_id, file_id)
            return {
                'file': record.as_dict(),
                'chunks': self._engine.stream_file_bytes(owner_id, file_id),
            }

        return self._run(owner_id, open_stream)

    def _run(
        self,
        owner_id: int | None,
        action: Callable[[], Any],
        success_status: HTTPStatus = HTTPStatus.OK,
        success_message: str = '',
    ) -> Outcome:
        if owner_id is None:
            return _unauthenticated()
        try:
            payload = action()
        except DriveError as error:
            return _error_outcome(error)
        return Outcome(success_status, success_message, payload=payload)


def _as_kind(kind: str) -> EntryKind:
    return 'file' if kind == 'file' else 'folder'


def _staging_failed(uploaded: Any) -> UploadResult:
    original_name = getattr(uploaded, 'name', None) or 'upload'
    return UploadResult(
        original_name=original_name,
        error=UploadError(original_name, 'file could not be stored'),
    )


def _unknown_kind(kind: str) -> Outcome:
    return Outcome(HTTPStatus.BAD_REQUEST, f'Unknown entry type: {kind}')


def _internal_error() -> Outcome:
    return Outcome(
        HTTPStatus.INTERNAL_SERVER_ERROR,
        'An internal error occurred.',
    )


def _unauthenticated() -> Outcome:
    return Outcome(
        HTTPStatus.UNAUTHORIZED,
        'Please log in to access this resource.',
    )


def _error_outcome(error: DriveError) -> Outcome:
    if isinstance(error, _SERVER_FAULTS):
        logger.error('Drive operation failed', exc_info=error)
        return _internal_error()
    for error_type, status in _ERROR_STATUSES:
        if isinstance(error, error_type):
            return Outcome(status, str(error))
    logger.error('Unmapped drive error', exc_info=error)
    return _internal_error()
