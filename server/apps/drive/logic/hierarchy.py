"""Business logic for the folder/file hierarchy.

HierarchyEngine owns the tree invariants: one root per owner, unique
sibling names, a protected root, bottom-up recursive deletion. It keeps
no state between calls and receives its metadata and blob stores
explicitly. Every method takes the owner ID as first argument.

Deletion policy: metadata is authoritative. Rows are removed inside a
metadata transaction first, blobs are removed best-effort afterwards.
A crash in between leaves orphaned blobs (reclaimed by the
cleanup_orphans command), never rows pointing to missing blobs.
"""

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Final, Literal, final

from django.conf import settings
from django.core.files.base import File as DjangoFile
from django.core.files.storage import default_storage

from server.apps.drive.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateNameError,
    NotFoundError,
    ProtectedEntityError,
    StoreConflictError,
)
from server.apps.drive.infrastructure.metadata import (
    is_owner_path,
    normalize_entry_name,
)
from server.apps.drive.infrastructure.metadata_store import (
    DjangoMetadataStore,
    MetadataStore,
)
from server.apps.drive.infrastructure.storage import BlobStore
from server.apps.drive.logic.tree import (
    FolderView,
    PathSegment,
    TreeNode,
    assemble_tree,
    walk_ancestors,
)
from server.apps.drive.logic.upload_pipeline import (
    StagedUpload,
    UploadPipeline,
    UploadResult,
)
from server.apps.drive.models import File, Folder

logger = logging.getLogger(__name__)

EntryKind = Literal['file', 'folder']
FolderOrdering = Literal['name', 'recent']

_FILE: Final = 'file'
_FOLDER: Final = 'folder'
_ORDERINGS: Final[dict[str, tuple[str, ...]]] = {
    'name': ('name', 'id'),
    'recent': ('-updated_at', 'name'),
}


@final
@dataclass(frozen=True, slots=True)
class DeletionReport:
    """What a delete_entry call removed."""

    folders_deleted: int
    files_deleted: int
    blobs_failed: int = 0


@final
class HierarchyEngine:
    """Folder/file hierarchy operations for any owner."""

    def __init__(
        self,
        metadata: MetadataStore,
        blobs: BlobStore,
        pipeline: UploadPipeline | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            metadata: Metadata store for Folder and File rows.
            blobs: Blob store holding file payloads.
            pipeline: Upload pipeline, built from the two stores
                when omitted.
        """
        self._metadata = metadata
        self._blobs = blobs
        self._pipeline = pipeline or UploadPipeline(metadata, blobs)

    @property
    def pipeline(self) -> UploadPipeline:
        """Upload pipeline used by commit_upload."""
        return self._pipeline

    def create_root_folder(self, owner_id: int) -> Folder:
        """Create the owner's root folder.

        Called once, when the account is created, inside the same
        transaction as the user row.

        Args:
            owner_id: Owner's user ID.

        Returns:
            Created root Folder.

        Raises:
            ConflictError: If the owner already has a root folder.
        """
        try:
            self._metadata.get_root_folder(owner_id)
        except NotFoundError:
            pass  # noqa: WPS420
        else:
            raise ConflictError(owner_id)

        try:
            root = self._metadata.insert_folder(
                owner_id,
                settings.DRIVE_ROOT_FOLDER_NAME,
                None,
                is_root=True,
            )
        except StoreConflictError as error:
            raise ConflictError(owner_id) from error

        logger.info(
            'Root folder created for owner %d (ID: %d)',
            owner_id,
            root.id,
        )
        return root

    def create_subfolder(
        self,
        owner_id: int,
        parent_id: int,
        name: str,
    ) -> Folder:
        """Create a folder below parent_id.

        The sibling check below catches the common case. A concurrent
        insert of the same name is rejected by the store's unique
        constraint and reported the same way.

        Args:
            owner_id: Owner's user ID.
            parent_id: Parent folder ID.
            name: New folder name (exact, case-sensitive).

        Returns:
            Created Folder.

        Raises:
            InvalidNameError: If the name cannot be stored.
            NotFoundError: If the parent is absent or foreign.
            DuplicateNameError: If a sibling already has the name.
        """
        folder_name = normalize_entry_name(name)
        parent = self._metadata.get_folder(owner_id, parent_id)
        self._ensure_unique_name(owner_id, parent.id, folder_name)

        try:
            folder = self._metadata.insert_folder(
                owner_id,
                folder_name,
                parent.id,
            )
        except StoreConflictError as error:
            raise DuplicateNameError(folder_name, parent.id) from error

        self._metadata.touch_folder(owner_id, parent.id)
        logger.info(
            'Folder created: %s (ID: %d, parent: %d)',
            folder.name,
            folder.id,
            parent.id,
        )
        return folder

    def resolve_folder(
        self,
        owner_id: int,
        folder_id: int | None = None,
        ordering: FolderOrdering = 'name',
    ) -> FolderView:
        """Load a folder with its parent and direct children.

        Args:
            owner_id: Owner's user ID.
            folder_id: Folder ID, None for the root folder.
            ordering: 'name' sorts children by name ascending,
                'recent' by last update, newest first.

        Returns:
            FolderView of the folder.

        Raises:
            NotFoundError: If the folder is absent or foreign.
        """
        if folder_id is None:
            folder = self._metadata.get_root_folder(owner_id)
        else:
            folder = self._metadata.get_folder(owner_id, folder_id)

        order_by = _ORDERINGS[ordering]
        parent = None
        if folder.parent_id is not None:
            parent = self._metadata.get_folder(owner_id, folder.parent_id)

        return FolderView(
            folder=folder,
            parent=parent,
            subfolders=self._metadata.list_child_folders(
                owner_id,
                folder.id,
                order_by,
            ),
            files=self._metadata.list_files(owner_id, folder.id, order_by),
        )

    def build_folder_tree(self, owner_id: int) -> TreeNode:
        """Assemble the owner's whole folder tree from one query.

        Args:
            owner_id: Owner's user ID.

        Returns:
            Root tree node, children sorted by name.

        Raises:
            HierarchyIntegrityError: If the stored folders have no
                single root.
        """
        return assemble_tree(self._metadata.list_folders(owner_id))

    def resolve_ancestor_path(
        self,
        owner_id: int,
        folder_id: int,
    ) -> list[PathSegment]:
        """Breadcrumb path from the root down to folder_id.

        Args:
            owner_id: Owner's user ID.
            folder_id: Folder to resolve.

        Returns:
            Path segments, root first, folder_id last.

        Raises:
            NotFoundError: If the folder is absent or foreign.
            HierarchyIntegrityError: If the parent chain is corrupted.
        """
        folders = self._metadata.list_folders(owner_id)
        folders_by_id = {folder.id: folder for folder in folders}
        return walk_ancestors(folders_by_id, folder_id)

    def rename_entry(
        self,
        owner_id: int,
        entry_id: int,
        kind: EntryKind,
        new_name: str,
    ) -> Folder | File:
        """Rename a file or a non-root folder.

        Args:
            owner_id: Owner's user ID.
            entry_id: File or folder ID.
            kind: 'file' or 'folder'.
            new_name: New name.

        Returns:
            Updated Folder or File.

        Raises:
            InvalidNameError: If the name cannot be stored.
            NotFoundError: If the entry is absent or foreign.
            ProtectedEntityError: If the entry is the root folder.
            DuplicateNameError: If a sibling folder has the name.
            ValueError: If kind is unknown.
        """
        entry_name = normalize_entry_name(new_name)
        if kind == _FILE:
            file_instance = self._metadata.rename_file(
                owner_id,
                entry_id,
                entry_name,
            )
            logger.info('File renamed: ID=%d -> %s', entry_id, entry_name)
            return file_instance
        if kind == _FOLDER:
            return self._rename_folder(owner_id, entry_id, entry_name)
        raise ValueError(f'Unknown entry kind: {kind!r}')

    def delete_entry(
        self,
        owner_id: int,
        entry_id: int,
        kind: EntryKind,
    ) -> DeletionReport:
        """Delete a file, or a non-root folder with everything below it.

        Args:
            owner_id: Owner's user ID.
            entry_id: File or folder ID.
            kind: 'file' or 'folder'.

        Returns:
            DeletionReport with removed row counts.

        Raises:
            NotFoundError: If the entry is absent or foreign.
            ProtectedEntityError: If the entry is the root folder.
            AuthorizationError: If the subtree contains another owner's
                folder (nothing is deleted).
            ValueError: If kind is unknown.
        """
        if kind == _FILE:
            return self._delete_file(owner_id, entry_id)
        if kind == _FOLDER:
            return self._delete_folder(owner_id, entry_id)
        raise ValueError(f'Unknown entry kind: {kind!r}')

    def commit_upload(
        self,
        owner_id: int,
        folder_id: int,
        staged: Sequence[StagedUpload],
    ) -> list[UploadResult]:
        """Commit staged uploads into a folder (see UploadPipeline)."""
        return self._pipeline.commit_upload(owner_id, folder_id, staged)

    def get_file(self, owner_id: int, file_id: int) -> File:
        """Fetch file metadata.

        Raises:
            NotFoundError: If the file is absent or foreign.
        """
        return self._metadata.get_file(owner_id, file_id)

    def stream_file_bytes(self, owner_id: int, file_id: int) -> Iterator[bytes]:
        """Open a file's blob and stream it in chunks.

        The blob is opened before returning, so a missing blob fails
        here and not halfway through a response.

        Args:
            owner_id: Owner's user ID.
            file_id: File ID.

        Returns:
            Iterator over the blob's bytes, closing the blob when done.

        Raises:
            NotFoundError: If the file is absent or foreign.
            AuthorizationError: If the stored path leaves the owner's
                directory.
            BlobIOError: If the blob cannot be opened.
        """
        record = self._metadata.get_file(owner_id, file_id)
        if not is_owner_path(owner_id, record.storage_path):
            logger.error(
                'File %d of owner %d points outside its directory: %s',
                file_id,
                owner_id,
                record.storage_path,
            )
            raise AuthorizationError(owner_id, file_id)
        return _iter_chunks(self._blobs.open_blob(record.storage_path))

    def _ensure_unique_name(
        self,
        owner_id: int,
        parent_id: int,
        name: str,
        exclude_id: int | None = None,
    ) -> None:
        siblings = self._metadata.list_child_folders(owner_id, parent_id)
        for sibling in siblings:
            if sibling.name == name and sibling.id != exclude_id:
                raise DuplicateNameError(name, parent_id)

    def _rename_folder(
        self,
        owner_id: int,
        folder_id: int,
        name: str,
    ) -> Folder:
        folder = self._metadata.get_folder(owner_id, folder_id)
        if folder.is_root or folder.parent_id is None:
            raise ProtectedEntityError(folder.id, 'rename')

        self._ensure_unique_name(owner_id, folder.parent_id, name, folder.id)
        try:
            folder = self._metadata.rename_folder(owner_id, folder.id, name)
        except StoreConflictError as error:
            raise DuplicateNameError(name, folder.parent_id) from error

        self._metadata.touch_folder(owner_id, folder.parent_id)
        logger.info('Folder renamed: ID=%d -> %s', folder.id, name)
        return folder

    def _delete_file(self, owner_id: int, file_id: int) -> DeletionReport:
        record = self._metadata.get_file(owner_id, file_id)
        with self._metadata.atomic():
            if not self._metadata.delete_file(owner_id, record.id):
                raise NotFoundError(_FILE, file_id)
            self._metadata.touch_folder(owner_id, record.folder_id)

        logger.info(
            'File deleted: ID=%d, path=%s',
            record.id,
            record.storage_path,
        )
        failed = self._discard_blobs([record.storage_path])
        return DeletionReport(
            folders_deleted=0,
            files_deleted=1,
            blobs_failed=failed,
        )

    def _delete_folder(self, owner_id: int, folder_id: int) -> DeletionReport:
        folder = self._metadata.get_folder(owner_id, folder_id)
        if folder.is_root or folder.parent_id is None:
            raise ProtectedEntityError(folder.id, 'delete')

        # Fails with AuthorizationError before anything is deleted
        subtree = self._metadata.collect_subtree(owner_id, folder.id)
        logger.info(
            'Deleting folder %d with %d descendant folders',
            folder.id,
            len(subtree) - 1,
        )

        with self._metadata.atomic():
            folders_deleted, files_deleted, storage_paths = (
                self._delete_subtree(owner_id, folder.id)
            )
            self._metadata.touch_folder(owner_id, folder.parent_id)

        failed = self._discard_blobs(storage_paths)
        logger.info(
            'Folder %d deleted: %d folders, %d files, %d blobs left behind',
            folder.id,
            folders_deleted,
            files_deleted,
            failed,
        )
        return DeletionReport(
            folders_deleted=folders_deleted,
            files_deleted=files_deleted,
            blobs_failed=failed,
        )

    def _delete_subtree(
        self,
        owner_id: int,
        folder_id: int,
    ) -> tuple[int, int, list[str]]:
        """Post-order deletion with an explicit stack.

        Children are listed again right before their parent goes, so a
        subfolder created concurrently is deleted in the same pass.
        """
        folders_deleted = 0
        files_deleted = 0
        storage_paths: list[str] = []
        stack: list[tuple[int, bool]] = [(folder_id, False)]
        while stack:
            current, expanded = stack.pop()
            children = self._metadata.list_child_folders(owner_id, current)
            if children and not expanded:
                stack.append((current, True))
                stack.extend((child.id, False) for child in children)
                continue
            if children:
                # Children appeared after expansion: expand again
                stack.append((current, False))
                continue

            files = self._metadata.list_files(owner_id, current)
            storage_paths.extend(record.storage_path for record in files)
            files_deleted += self._metadata.delete_files(owner_id, current)

            if self._metadata.delete_folder(owner_id, current):
                folders_deleted += 1
            else:
                logger.warning(
                    'Folder %d vanished during recursive delete '
                    '(orphan cleanup skipped)',
                    current,
                )
        return folders_deleted, files_deleted, storage_paths

    def _discard_blobs(self, storage_paths: list[str]) -> int:
        failed = 0
        for storage_path in storage_paths:
            if not self._blobs.discard(storage_path):
                failed += 1
        return failed


def build_engine() -> HierarchyEngine:
    """Engine wired to the Django ORM and the default storage backend."""
    return HierarchyEngine(DjangoMetadataStore(), default_storage)


def _iter_chunks(handle: DjangoFile) -> Iterator[bytes]:
    with handle:
        yield from handle.chunks()
