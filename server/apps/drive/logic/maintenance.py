"""Business logic for storage maintenance.

Blob deletion is best-effort everywhere in the drive core, so blobs
can outlive their File rows: a failed delete, a crash between metadata
commit and blob cleanup, an abandoned staged upload. This module finds
and removes them.
"""

import logging
from collections.abc import Iterator
from datetime import datetime

from server.apps.drive.infrastructure.metadata_store import MetadataStore
from server.apps.drive.infrastructure.storage import BlobStore

logger = logging.getLogger(__name__)


def find_orphaned_blobs(
    metadata: MetadataStore,
    blobs: BlobStore,
    modified_before: datetime,
) -> Iterator[str]:
    """Yield blobs under owner directories that no File row references.

    Only blobs last modified before the cutoff are reported, so uploads
    still being staged or committed are left alone.

    Args:
        metadata: Metadata store to read referenced paths from.
        blobs: Blob store to scan.
        modified_before: Cutoff for the blob modification time.

    Yields:
        Storage paths of orphaned blobs.
    """
    referenced = metadata.list_storage_paths()
    owner_dirs, _ = blobs.listdir('')
    for owner_dir in sorted(owner_dirs):
        if not owner_dir.isdigit():
            logger.debug('Skipping non-owner directory: %s', owner_dir)
            continue
        _, names = blobs.listdir(owner_dir)
        for name in sorted(names):
            storage_path = f'{owner_dir}/{name}'
            if storage_path in referenced:
                continue
            if blobs.get_modified_time(storage_path) >= modified_before:
                continue
            yield storage_path


def purge_orphaned_blobs(
    metadata: MetadataStore,
    blobs: BlobStore,
    modified_before: datetime,
) -> tuple[int, int]:
    """Delete orphaned blobs.

    Args:
        metadata: Metadata store to read referenced paths from.
        blobs: Blob store to clean.
        modified_before: Cutoff for the blob modification time.

    Returns:
        Tuple of (deleted, failed) blob counts.
    """
    deleted = 0
    failed = 0
    for storage_path in find_orphaned_blobs(metadata, blobs, modified_before):
        if blobs.discard(storage_path):
            logger.info('Purged orphaned blob: %s', storage_path)
            deleted += 1
        else:
            failed += 1
    return deleted, failed
