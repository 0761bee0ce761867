"""Database models for drive app."""

from typing import Any, Final, final, override

from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()

# Constants for field max lengths
NAME_MAX_LENGTH: Final = 255
_MIME_TYPE_MAX_LENGTH: Final = 255
_STORAGE_PATH_MAX_LENGTH: Final = 1024


@final
class Folder(models.Model):
    """Folder in an owner's hierarchy.

    Every owner has exactly one root folder (no parent, is_root set),
    created together with the account. All other folders hang below it
    through the parent link. Sibling names are unique per owner.
    """

    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='folders',
        db_index=True,
    )

    name = models.CharField(max_length=NAME_MAX_LENGTH)

    # RESTRICT: a folder row cannot go while a child still references it,
    # but deleting the owner cascades through the whole tree.
    parent = models.ForeignKey(
        'self',
        on_delete=models.RESTRICT,
        related_name='subfolders',
        null=True,
        blank=True,
    )

    is_root = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'Folder'  # type: ignore[mutable-override]
        verbose_name_plural = 'Folders'  # type: ignore[mutable-override]
        ordering = ['name']

        indexes = [
            # Optimize child listing queries
            models.Index(
                fields=['owner', 'parent', 'name'],
                name='folders_owner_parent_idx',
            ),
            # Optimize recently touched queries
            models.Index(
                fields=['owner', '-updated_at'],
                name='folders_owner_recent_idx',
            ),
        ]

        constraints = [
            # Prevent two siblings with the same name
            models.UniqueConstraint(
                fields=['owner', 'parent', 'name'],
                name='folders_owner_parent_name_unique',
            ),
            # Exactly one root per owner
            models.UniqueConstraint(
                fields=['owner'],
                condition=models.Q(is_root=True),
                name='folders_owner_single_root',
            ),
            # Root folders have no parent, all others have one
            models.CheckConstraint(
                condition=(
                    models.Q(is_root=True, parent__isnull=True)
                    | models.Q(is_root=False, parent__isnull=False)
                ),
                name='folders_root_has_no_parent',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name}'

    def as_dict(self) -> dict[str, Any]:
        """Plain representation for callers that serialize.

        Returns:
            Dictionary with folder fields.
        """
        return {
            'id': self.id,
            'name': self.name,
            'parent_id': self.parent_id,
            'is_root': self.is_root,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }


@final
class File(models.Model):
    """File attached to a folder.

    The blob lives in the configured storage backend at storage_path,
    following the pattern: {owner_id}/{stem}-{file_id}{extension}

    While an upload is being committed the path briefly points to the
    staged temp blob instead.
    """

    owner = models.ForeignKey(
        User,
        on_delete=models.CASCADE,
        related_name='files',
        db_index=True,
    )

    folder = models.ForeignKey(
        Folder,
        on_delete=models.RESTRICT,
        related_name='files',
    )

    # Original name as uploaded, shown to the owner
    name = models.CharField(max_length=NAME_MAX_LENGTH)

    storage_path = models.CharField(
        max_length=_STORAGE_PATH_MAX_LENGTH,
        unique=True,
        help_text='Path in storage: {owner_id}/{stem}-{id}{ext}',
    )

    size_bytes = models.BigIntegerField(
        help_text='File size in bytes',
    )

    mime_type = models.CharField(
        max_length=_MIME_TYPE_MAX_LENGTH,
        help_text='MIME type claimed by the client or guessed from name',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        """Model metadata."""

        verbose_name = 'File'  # type: ignore[mutable-override]
        verbose_name_plural = 'Files'  # type: ignore[mutable-override]
        ordering = ['name']

        indexes = [
            # Optimize folder listing queries
            models.Index(
                fields=['owner', 'folder', 'name'],
                name='files_owner_folder_idx',
            ),
        ]

        constraints = [
            models.CheckConstraint(
                condition=models.Q(size_bytes__gte=0),
                name='files_size_non_negative',
            ),
        ]

    @override
    def __str__(self) -> str:
        """String representation."""
        return f'{self.owner_id}:{self.name}'

    def as_dict(self) -> dict[str, Any]:
        """Plain representation for callers that serialize.

        Returns:
            Dictionary with file fields (storage path excluded).
        """
        return {
            'id': self.id,
            'name': self.name,
            'folder_id': self.folder_id,
            'size_bytes': self.size_bytes,
            'mime_type': self.mime_type,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }
