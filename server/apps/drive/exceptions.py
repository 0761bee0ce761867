"""Exceptions for drive app."""


class DriveError(Exception):
    """Base class for all errors raised by the drive core."""


class NotFoundError(DriveError):
    """Raised when an entity is absent or not owned by the caller.

    Both cases produce the same error so callers cannot probe for the
    existence of another owner's entries.
    """

    def __init__(self, kind: str, entity_id: int | None) -> None:
        """Initialize NotFoundError.

        Args:
            kind: Entity kind ('folder' or 'file').
            entity_id: Requested entity ID.
        """
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f'{kind.capitalize()} not found: {entity_id}')


class DuplicateNameError(DriveError):
    """Raised when a sibling folder with the same name already exists."""

    def __init__(self, name: str, parent_id: int | None) -> None:
        """Initialize DuplicateNameError.

        Args:
            name: Conflicting folder name.
            parent_id: ID of the parent folder.
        """
        self.name = name
        self.parent_id = parent_id
        super().__init__(
            f'A subfolder named "{name}" already exists '
            f'in folder {parent_id}',
        )


class ConflictError(DriveError):
    """Raised when an owner already has a root folder."""

    def __init__(self, owner_id: int) -> None:
        """Initialize ConflictError.

        Args:
            owner_id: Owner that already has a root folder.
        """
        self.owner_id = owner_id
        super().__init__(f'Root folder already exists for owner {owner_id}')


class ProtectedEntityError(DriveError):
    """Raised on an attempt to rename or delete the root folder."""

    def __init__(self, folder_id: int, action: str) -> None:
        """Initialize ProtectedEntityError.

        Args:
            folder_id: ID of the root folder.
            action: Attempted action ('rename' or 'delete').
        """
        self.folder_id = folder_id
        self.action = action
        super().__init__(f'Cannot {action} root folder {folder_id}')


class AuthorizationError(DriveError):
    """Raised when a cross-owner entry is met in the middle of an operation."""

    def __init__(self, owner_id: int, entity_id: int) -> None:
        """Initialize AuthorizationError.

        Args:
            owner_id: Caller's owner ID.
            entity_id: Entity that belongs to someone else.
        """
        self.owner_id = owner_id
        self.entity_id = entity_id
        super().__init__(
            f'Owner {owner_id} is not allowed to access entry {entity_id}',
        )


class InvalidNameError(DriveError):
    """Raised when a folder or file name cannot be stored."""

    def __init__(self, name: str, reason: str) -> None:
        """Initialize InvalidNameError.

        Args:
            name: Rejected name.
            reason: Human readable reason.
        """
        self.name = name
        self.reason = reason
        super().__init__(f'Invalid name {name!r}: {reason}')


class HierarchyIntegrityError(DriveError):
    """Raised when stored folder data violates the tree invariants.

    Missing root, several roots or a cycle in the parent chain. This
    is a server-side fault and must not be retried automatically.
    """


class StoreError(DriveError):
    """Raised when the metadata store fails."""


class StoreConflictError(StoreError):
    """Raised when the metadata store rejects a row on a unique constraint."""


class BlobIOError(DriveError):
    """Raised when the blob store fails to read, write, move or delete."""

    def __init__(self, operation: str, name: str) -> None:
        """Initialize BlobIOError.

        Args:
            operation: Failed operation ('save', 'move', 'delete', 'open').
            name: Storage path involved.
        """
        self.operation = operation
        self.name = name
        super().__init__(f'Blob {operation} failed: {name}')


class UploadError(DriveError):
    """Reported per file when committing an upload fails.

    Never raised out of the pipeline: it is stored in the file's
    upload result so the rest of the batch can continue.
    """

    def __init__(self, original_name: str, reason: str) -> None:
        """Initialize UploadError.

        Args:
            original_name: Name the client uploaded the file with.
            reason: Human readable reason.
        """
        self.original_name = original_name
        self.reason = reason
        super().__init__(f'Upload of {original_name!r} failed: {reason}')
