"""Django admin configuration for drive app."""

from django.contrib import admin
from django.db.models import QuerySet
from django.http import HttpRequest

from server.apps.drive.models import File, Folder


def format_bytes(size_bytes: int) -> str:
    """Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes.

    Returns:
        Formatted size string (e.g., '1.5 MB', '234 KB').
    """
    if size_bytes < 1024:
        return f'{size_bytes} B'
    if size_bytes < 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / 1024:.1f} KB'
    if size_bytes < 1024 * 1024 * 1024:  # noqa: WPS531
        return f'{size_bytes / (1024 * 1024):.1f} MB'
    return f'{size_bytes / (1024 * 1024 * 1024):.1f} GB'


@admin.register(Folder)
class FolderAdmin(admin.ModelAdmin[Folder]):
    """Admin interface for Folder model."""

    list_display = [
        'name',
        'owner',
        'parent',
        'is_root',
        'updated_at',
    ]

    list_filter = [
        'is_root',
        'owner',
    ]

    search_fields = [
        'name',
        'owner__username',
    ]

    readonly_fields = [
        'is_root',
        'created_at',
        'updated_at',
    ]

    raw_id_fields = ['parent']

    fieldsets = (
        ('Folder Information', {
            'fields': ('name', 'owner', 'parent', 'is_root'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def get_queryset(self, request: HttpRequest) -> QuerySet[Folder]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner', 'parent')

    def has_delete_permission(
        self,
        request: HttpRequest,
        obj: Folder | None = None,
    ) -> bool:
        """Folders are only deleted recursively by the hierarchy engine."""
        return False


@admin.register(File)
class FileAdmin(admin.ModelAdmin[File]):
    """Admin interface for File model.

    Files are read-only here: creating or moving them outside the
    upload pipeline would desynchronize rows and blobs.
    """

    list_display = [
        'name',
        'owner',
        'folder',
        'size_display',
        'mime_type',
        'storage_path',
        'created_at',
    ]

    list_filter = [
        'mime_type',
        'created_at',
        'owner',
    ]

    search_fields = [
        'name',
        'storage_path',
    ]

    readonly_fields = [
        'owner',
        'folder',
        'storage_path',
        'size_bytes',
        'mime_type',
        'created_at',
        'updated_at',
    ]

    fieldsets = (
        ('File Information', {
            'fields': ('name', 'owner', 'folder'),
        }),
        ('Storage', {
            'fields': ('storage_path', 'size_bytes', 'mime_type'),
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at'),
        }),
    )

    def size_display(self, obj: File) -> str:
        """Display file size in human-readable format.

        Args:
            obj: File instance.

        Returns:
            Formatted size string.
        """
        return format_bytes(obj.size_bytes)
    size_display.short_description = 'Size'  # type: ignore[attr-defined]

    def has_add_permission(self, request: HttpRequest) -> bool:
        """Files are only created by the upload pipeline."""
        return False

    def has_delete_permission(
        self,
        request: HttpRequest,
        obj: File | None = None,
    ) -> bool:
        """Files are only deleted through the hierarchy engine."""
        return False

    def get_queryset(self, request: HttpRequest) -> QuerySet[File]:
        """Optimize queryset with select_related.

        Args:
            request: HTTP request.

        Returns:
            Optimized QuerySet.
        """
        return super().get_queryset(request).select_related('owner', 'folder')
