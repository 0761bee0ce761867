"""Shared fixtures for drive app tests."""

import boto3
import pytest
from django.contrib.auth import get_user_model
from django.core.files.base import ContentFile
from moto import mock_aws

from server.apps.drive.infrastructure.metadata_store import DjangoMetadataStore
from server.apps.drive.infrastructure.storage import (
    FileSystemBlobStorage,
    S3BlobStorage,
)
from server.apps.drive.logic.facade import DriveFacade
from server.apps.drive.logic.hierarchy import HierarchyEngine
from server.apps.drive.models import Folder

User = get_user_model()

_BUCKET = 'drive-files'


@pytest.fixture(autouse=True)
def blob_root(settings, tmp_path):
    """Point the default storage at a per-test directory.

    Returns:
        Path of the blob directory.
    """
    location = tmp_path / 'blobs'
    location.mkdir()
    settings.STORAGES = {
        **settings.STORAGES,
        'default': {
            'BACKEND': (
                'server.apps.drive.infrastructure.storage.FileSystemBlobStorage'
            ),
            'OPTIONS': {'location': str(location)},
        },
    }
    return location


@pytest.fixture
def user(db):
    """Create test user (the root folder is created by the signal).

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def root_folder(user):
    """Root folder of the test user.

    Returns:
        Root Folder instance.
    """
    return Folder.objects.get(owner=user, is_root=True)


@pytest.fixture
def other_root_folder(other_user):
    """Root folder of the second user.

    Returns:
        Root Folder instance.
    """
    return Folder.objects.get(owner=other_user, is_root=True)


@pytest.fixture
def blob_storage(blob_root):
    """Filesystem blob storage rooted in the per-test directory.

    Returns:
        FileSystemBlobStorage instance.
    """
    return FileSystemBlobStorage(location=str(blob_root))


@pytest.fixture
def metadata_store(db):
    """ORM backed metadata store.

    Returns:
        DjangoMetadataStore instance.
    """
    return DjangoMetadataStore()


@pytest.fixture
def engine(metadata_store, blob_storage):
    """Hierarchy engine wired to the test stores.

    Returns:
        HierarchyEngine instance.
    """
    return HierarchyEngine(metadata_store, blob_storage)


@pytest.fixture
def facade(engine):
    """Access façade over the test engine.

    Returns:
        DriveFacade instance.
    """
    return DriveFacade(engine)


@pytest.fixture
def stage(engine, user):
    """Factory staging uploads for the test user.

    Returns:
        Function (name, data) -> StagedUpload.
    """

    def factory(name, data=b'test file content'):
        content = ContentFile(data, name=name)
        return engine.pipeline.stage_upload(user.id, content)

    return factory


@pytest.fixture
def mock_s3():
    """Mock S3 service with drive-files bucket.

    Yields:
        boto3 S3 resource with drive-files bucket created.
    """
    with mock_aws():
        conn = boto3.resource('s3', region_name='us-east-1')
        conn.create_bucket(Bucket=_BUCKET)
        yield conn


@pytest.fixture
def s3_storage(mock_s3):
    """S3 blob storage talking to the mocked bucket.

    Returns:
        S3BlobStorage instance.
    """
    return S3BlobStorage(
        bucket_name=_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
        file_overwrite=False,
        default_acl=None,
    )


@pytest.fixture
def sample_file_content():
    """Sample file content for testing.

    Returns:
        ContentFile with test data.
    """
    return ContentFile(b'test file content', name='test.txt')
