"""Django storage configuration for file payloads.

Two backends are supported, selected with DRIVE_BLOB_BACKEND:
- filesystem: blobs under DRIVE_UPLOAD_ROOT (default)
- s3: any S3-compatible bucket (AWS, MinIO, Cloudflare R2)
"""

from typing import Any, Final

from server.settings.components import BASE_DIR, config

DRIVE_BLOB_BACKEND = config('DRIVE_BLOB_BACKEND', default='filesystem')


def _blob_storage() -> dict[str, Any]:
    if DRIVE_BLOB_BACKEND == 's3':
        return {
            'BACKEND': 'server.apps.drive.infrastructure.storage.S3BlobStorage',
            'OPTIONS': {
                'bucket_name': config('AWS_STORAGE_BUCKET_NAME'),
                'access_key': config('AWS_ACCESS_KEY_ID'),
                'secret_key': config('AWS_SECRET_ACCESS_KEY'),
                'endpoint_url': config(
                    'AWS_S3_ENDPOINT_URL',
                    default=None,
                ),
                'region_name': config(
                    'AWS_S3_REGION_NAME',
                    default='auto',
                ),
                'file_overwrite': False,  # Prevent accidental overwrites
                'default_acl': None,  # Inherit bucket ACL
            },
        }
    if DRIVE_BLOB_BACKEND == 'filesystem':
        return {
            'BACKEND': (
                'server.apps.drive.infrastructure.storage.FileSystemBlobStorage'
            ),
            'OPTIONS': {
                'location': config(
                    'DRIVE_UPLOAD_ROOT',
                    default=str(BASE_DIR.joinpath('uploads')),
                ),
            },
        }
    raise ValueError(f'Unknown DRIVE_BLOB_BACKEND: {DRIVE_BLOB_BACKEND}')


STORAGES: Final[dict[str, dict[str, Any]]] = {
    'default': _blob_storage(),
    'staticfiles': {
        # Keep static files separate from user files
        'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage',
    },
}
