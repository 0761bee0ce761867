"""Metadata and naming utilities for stored blobs."""

import mimetypes
import secrets
from datetime import UTC, datetime
from pathlib import PurePosixPath
from typing import Final

from server.apps.drive.exceptions import InvalidNameError
from server.apps.drive.models import NAME_MAX_LENGTH

_DEFAULT_MIME_TYPE: Final = 'application/octet-stream'
_TEMP_PREFIX: Final = 'temp-'
_FORBIDDEN_NAME_CHARS: Final = frozenset('/\\\x00')


def detect_mime_type(filename: str, claimed: str | None = None) -> str:
    """Pick the MIME type for an uploaded file.

    The type claimed by the client wins. Otherwise it is guessed from the
    filename extension with Python's mimetypes module.

    Args:
        filename: Original filename with extension.
        claimed: MIME type sent by the client, if any.

    Returns:
        MIME type string (e.g., 'image/jpeg', 'application/pdf').
        Returns 'application/octet-stream' if type cannot be determined.
    """
    if claimed:
        return claimed
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type is None:
        return _DEFAULT_MIME_TYPE
    return mime_type


def normalize_entry_name(name: str) -> str:
    """Validate a folder or file name and strip surrounding whitespace.

    Args:
        name: Name proposed by the caller.

    Returns:
        Normalized name.

    Raises:
        InvalidNameError: If name is blank, too long or contains
            a path separator or NUL.
    """
    normalized = name.strip()
    if not normalized:
        raise InvalidNameError(name, 'name cannot be empty')
    if len(normalized) > NAME_MAX_LENGTH:
        raise InvalidNameError(
            name,
            f'name is longer than {NAME_MAX_LENGTH} characters',
        )
    if _FORBIDDEN_NAME_CHARS.intersection(normalized):
        raise InvalidNameError(name, 'name contains a path separator')
    return normalized


def owner_directory(owner_id: int) -> str:
    """Storage directory that namespaces all blobs of one owner.

    Args:
        owner_id: Owner's user ID.

    Returns:
        Directory name (e.g., '123').
    """
    return str(owner_id)


def build_temp_path(owner_id: int, original_name: str) -> str:
    """Generate a collision-proof staging path for an incoming upload.

    Args:
        owner_id: Owner's user ID.
        original_name: Name the client uploaded the file with.

    Returns:
        Temp path (e.g., '123/temp-20260131T143052123456-9f1c2a7b.pdf').
    """
    suffix = PurePosixPath(original_name).suffix
    timestamp = datetime.now(tz=UTC).strftime('%Y%m%dT%H%M%S%f')
    token = secrets.token_hex(4)
    return (
        f'{owner_directory(owner_id)}/'
        f'{_TEMP_PREFIX}{timestamp}-{token}{suffix}'
    )


def build_final_path(temp_path: str, original_name: str, file_id: int) -> str:
    """Compute the permanent path of a committed file.

    The final blob stays in the same directory as the staged one and
    embeds the file ID, so two files with the same original name never
    collide on disk.

    Args:
        temp_path: Staged temp path.
        original_name: Name the client uploaded the file with.
        file_id: Database ID assigned to the file.

    Returns:
        Final path (e.g., '123/report-42.pdf').
    """
    original = PurePosixPath(original_name)
    final_name = f'{original.stem}-{file_id}{original.suffix}'
    return str(PurePosixPath(temp_path).parent / final_name)


def is_owner_path(owner_id: int, storage_path: str) -> bool:
    """Check that a storage path stays inside the owner's directory.

    Ensures the path starts with the owner's ID and does not climb out
    of it. This is the isolation check between owners.

    Args:
        owner_id: Owner's user ID.
        storage_path: Path to check.

    Returns:
        True if the path belongs to the owner.
    """
    parts = PurePosixPath(storage_path).parts
    if len(parts) < 2 or '..' in parts:
        return False
    return parts[0] == owner_directory(owner_id)
