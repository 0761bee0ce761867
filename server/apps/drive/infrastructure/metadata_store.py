"""Metadata store: owner-scoped persistence of folders and files.

Every query filters by owner ID inside the query itself, so a row of
another owner is indistinguishable from a missing row.
"""

import functools
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, Final, ParamSpec, Protocol, TypeVar, final

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import ProtectedError, RestrictedError
from django.utils import timezone

from server.apps.drive.exceptions import (
    AuthorizationError,
    HierarchyIntegrityError,
    NotFoundError,
    StoreConflictError,
    StoreError,
)
from server.apps.drive.models import File, Folder

logger = logging.getLogger(__name__)

_P = ParamSpec('_P')
_R = TypeVar('_R')

_FOLDER: Final = 'folder'
_FILE: Final = 'file'


class MetadataStore(Protocol):
    """Operations the drive core needs from a metadata backend."""

    def atomic(self) -> Any:
        """Context manager grouping operations into one transaction."""

    def get_folder(self, owner_id: int, folder_id: int) -> Folder:
        """Fetch one folder."""

    def get_root_folder(self, owner_id: int) -> Folder:
        """Fetch the owner's root folder."""

    def list_folders(self, owner_id: int) -> list[Folder]:
        """Fetch every folder of the owner."""

    def list_child_folders(
        self,
        owner_id: int,
        parent_id: int,
        ordering: tuple[str, ...] = ('name',),
    ) -> list[Folder]:
        """Fetch direct subfolders."""

    def list_files(
        self,
        owner_id: int,
        folder_id: int,
        ordering: tuple[str, ...] = ('name',),
    ) -> list[File]:
        """Fetch files attached to a folder."""

    def collect_subtree(self, owner_id: int, folder_id: int) -> list[int]:
        """Collect IDs of a folder and all its descendants."""

    def insert_folder(
        self,
        owner_id: int,
        name: str,
        parent_id: int | None,
        *,
        is_root: bool = False,
    ) -> Folder:
        """Insert a folder row."""

    def rename_folder(self, owner_id: int, folder_id: int, name: str) -> Folder:
        """Change a folder's name."""

    def touch_folder(self, owner_id: int, folder_id: int) -> None:
        """Bump a folder's updated_at."""

    def delete_folder(self, owner_id: int, folder_id: int) -> int:
        """Delete one (empty) folder row."""

    def get_file(self, owner_id: int, file_id: int) -> File:
        """Fetch one file."""

    def insert_file(  # noqa: WPS211
        self,
        owner_id: int,
        folder_id: int,
        name: str,
        storage_path: str,
        size_bytes: int,
        mime_type: str,
    ) -> File:
        """Insert a file row."""

    def rename_file(self, owner_id: int, file_id: int, name: str) -> File:
        """Change a file's name."""

    def set_file_storage_path(
        self,
        owner_id: int,
        file_id: int,
        storage_path: str,
    ) -> File:
        """Point a file row at a new blob."""

    def delete_file(self, owner_id: int, file_id: int) -> int:
        """Delete one file row."""

    def delete_files(self, owner_id: int, folder_id: int) -> int:
        """Delete all file rows of a folder."""

    def list_storage_paths(self) -> set[str]:
        """Storage paths referenced by any file row."""


def _translate_errors(function: Callable[_P, _R]) -> Callable[_P, _R]:
    """Map Django database errors to store errors."""

    @functools.wraps(function)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        try:
            return function(*args, **kwargs)
        except (ProtectedError, RestrictedError) as error:
            # Both subclass IntegrityError but are not unique violations
            logger.exception(
                'Metadata store refused delete in %s',
                function.__name__,
            )
            raise StoreError(str(error)) from error
        except IntegrityError as error:
            raise StoreConflictError(str(error)) from error
        except DatabaseError as error:
            logger.exception('Metadata store failure in %s', function.__name__)
            raise StoreError(str(error)) from error

    return wrapper


@final
class DjangoMetadataStore:
    """Metadata store backed by the Django ORM."""

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the enclosed operations in one database transaction.

        Yields:
            Nothing, the block runs inside transaction.atomic().
        """
        with transaction.atomic():
            yield

    @_translate_errors
    def get_folder(self, owner_id: int, folder_id: int) -> Folder:
        """Fetch one folder owned by owner_id.

        Args:
            owner_id: Owner's user ID.
            folder_id: Folder ID.

        Returns:
            Folder instance.

        Raises:
            NotFoundError: If absent or owned by someone else.
        """
        try:
            return Folder.objects.get(id=folder_id, owner_id=owner_id)
        except Folder.DoesNotExist:
            raise NotFoundError(_FOLDER, folder_id) from None

    @_translate_errors
    def get_root_folder(self, owner_id: int) -> Folder:
        """Fetch the owner's root folder.

        Args:
            owner_id: Owner's user ID.

        Returns:
            Root Folder instance.

        Raises:
            NotFoundError: If the owner has no root folder.
        """
        try:
            return Folder.objects.get(
                owner_id=owner_id,
                is_root=True,
                parent__isnull=True,
            )
        except Folder.DoesNotExist:
            raise NotFoundError(_FOLDER, None) from None

    @_translate_errors
    def list_folders(self, owner_id: int) -> list[Folder]:
        """Fetch every folder of the owner in a single query."""
        return list(
            Folder.objects.filter(owner_id=owner_id).order_by('name', 'id'),
        )

    @_translate_errors
    def list_child_folders(
        self,
        owner_id: int,
        parent_id: int,
        ordering: tuple[str, ...] = ('name',),
    ) -> list[Folder]:
        """Fetch direct subfolders of parent_id."""
        return list(
            Folder.objects.filter(
                owner_id=owner_id,
                parent_id=parent_id,
            ).order_by(*ordering),
        )

    @_translate_errors
    def list_files(
        self,
        owner_id: int,
        folder_id: int,
        ordering: tuple[str, ...] = ('name',),
    ) -> list[File]:
        """Fetch files attached to folder_id."""
        return list(
            File.objects.filter(
                owner_id=owner_id,
                folder_id=folder_id,
            ).order_by(*ordering),
        )

    @_translate_errors
    def collect_subtree(self, owner_id: int, folder_id: int) -> list[int]:
        """Collect IDs of a folder and all its descendants.

        Walks the tree level by level (one query per depth level). The
        child query is not owner-filtered, so a descendant that belongs
        to another owner is reported instead of skipped.

        Args:
            owner_id: Owner's user ID.
            folder_id: ID of the subtree root (must be owned by owner_id).

        Returns:
            Folder IDs, subtree root first, parents before children.

        Raises:
            AuthorizationError: If any descendant belongs to another owner.
            HierarchyIntegrityError: If a folder is reached twice (cycle).
        """
        collected = [folder_id]
        seen = {folder_id}
        frontier = [folder_id]
        while frontier:
            children = Folder.objects.filter(
                parent_id__in=frontier,
            ).values_list('id', 'owner_id')
            frontier = []
            for child_id, child_owner_id in children:
                if child_owner_id != owner_id:
                    raise AuthorizationError(owner_id, child_id)
                if child_id in seen:
                    raise HierarchyIntegrityError(
                        f'Cycle detected below folder {folder_id}',
                    )
                seen.add(child_id)
                collected.append(child_id)
                frontier.append(child_id)
        return collected

    @_translate_errors
    def insert_folder(
        self,
        owner_id: int,
        name: str,
        parent_id: int | None,
        *,
        is_root: bool = False,
    ) -> Folder:
        """Insert a folder row.

        Raises:
            StoreConflictError: If a unique constraint rejects the row.
        """
        with transaction.atomic():
            return Folder.objects.create(
                owner_id=owner_id,
                name=name,
                parent_id=parent_id,
                is_root=is_root,
            )

    @_translate_errors
    def rename_folder(self, owner_id: int, folder_id: int, name: str) -> Folder:
        """Change a folder's name.

        Raises:
            NotFoundError: If absent or owned by someone else.
            StoreConflictError: If a sibling already uses the name.
        """
        with transaction.atomic():
            folder = self.get_folder(owner_id, folder_id)
            folder.name = name
            folder.save(update_fields=['name', 'updated_at'])
        return folder

    @_translate_errors
    def touch_folder(self, owner_id: int, folder_id: int) -> None:
        """Bump a folder's updated_at (missing folders are ignored)."""
        Folder.objects.filter(id=folder_id, owner_id=owner_id).update(
            updated_at=timezone.now(),
        )

    @_translate_errors
    def delete_folder(self, owner_id: int, folder_id: int) -> int:
        """Delete one folder row, re-checking ownership in the statement.

        Returns:
            Number of deleted rows (0 if already gone).
        """
        deleted, _ = Folder.objects.filter(
            id=folder_id,
            owner_id=owner_id,
        ).delete()
        return deleted

    @_translate_errors
    def get_file(self, owner_id: int, file_id: int) -> File:
        """Fetch one file owned by owner_id.

        Raises:
            NotFoundError: If absent or owned by someone else.
        """
        try:
            return File.objects.get(id=file_id, owner_id=owner_id)
        except File.DoesNotExist:
            raise NotFoundError(_FILE, file_id) from None

    @_translate_errors
    def insert_file(  # noqa: WPS211
        self,
        owner_id: int,
        folder_id: int,
        name: str,
        storage_path: str,
        size_bytes: int,
        mime_type: str,
    ) -> File:
        """Insert a file row and return it with its generated ID."""
        with transaction.atomic():
            return File.objects.create(
                owner_id=owner_id,
                folder_id=folder_id,
                name=name,
                storage_path=storage_path,
                size_bytes=size_bytes,
                mime_type=mime_type,
            )

    @_translate_errors
    def rename_file(self, owner_id: int, file_id: int, name: str) -> File:
        """Change a file's name, leaving every other field alone."""
        with transaction.atomic():
            file_instance = self.get_file(owner_id, file_id)
            file_instance.name = name
            file_instance.save(update_fields=['name', 'updated_at'])
        return file_instance

    @_translate_errors
    def set_file_storage_path(
        self,
        owner_id: int,
        file_id: int,
        storage_path: str,
    ) -> File:
        """Point a file row at a new blob."""
        with transaction.atomic():
            file_instance = self.get_file(owner_id, file_id)
            file_instance.storage_path = storage_path
            file_instance.save(update_fields=['storage_path', 'updated_at'])
        return file_instance

    @_translate_errors
    def delete_file(self, owner_id: int, file_id: int) -> int:
        """Delete one file row.

        Returns:
            Number of deleted rows (0 if already gone).
        """
        deleted, _ = File.objects.filter(
            id=file_id,
            owner_id=owner_id,
        ).delete()
        return deleted

    @_translate_errors
    def delete_files(self, owner_id: int, folder_id: int) -> int:
        """Batch delete all file rows of a folder.

        Returns:
            Number of deleted rows.
        """
        deleted, _ = File.objects.filter(
            owner_id=owner_id,
            folder_id=folder_id,
        ).delete()
        return deleted

    @_translate_errors
    def list_storage_paths(self) -> set[str]:
        """Storage paths referenced by any file row (all owners)."""
        return set(File.objects.values_list('storage_path', flat=True))
