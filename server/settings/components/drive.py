"""Drive core settings."""

from server.settings.components import config

# Display name of the folder created for every new user
DRIVE_ROOT_FOLDER_NAME = config('DRIVE_ROOT_FOLDER_NAME', default='Root Folder')

# Largest accepted upload, in bytes (100 MiB)
DRIVE_MAX_UPLOAD_BYTES = config(
    'DRIVE_MAX_UPLOAD_BYTES',
    cast=int,
    default=100 * 1024 * 1024,
)

# Unreferenced blobs younger than this are kept by cleanup_orphans
DRIVE_TEMP_RETENTION_HOURS = config(
    'DRIVE_TEMP_RETENTION_HOURS',
    cast=int,
    default=24,
)
