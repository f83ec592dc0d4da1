"""Shared fixtures for files app tests."""

from concurrent.futures import Executor, Future
from datetime import timedelta

import boto3
import pytest
from django.contrib.auth import get_user_model
from django.core.files.base import ContentFile
from moto import mock_aws

from server.apps.files.infrastructure.storage import (
    FileStorage,
    LocalFileStorage,
)
from server.apps.files.logic.upload_tasks import UploadTaskRegistry

User = get_user_model()

TEST_BUCKET = 'cloud-drive'


class InlineExecutor(Executor):
    """Executor running every job immediately in the calling thread.

    Keeps asynchronous uploads inside the test's database transaction.
    """

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, /, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future


@pytest.fixture
def user(db):
    """Create test user.

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
def mock_s3():
    """Mock S3 service with cloud-drive bucket.

    Yields:
        boto3 S3 resource with cloud-drive bucket created.
    """
    with mock_aws():
        # Create S3 resource
        conn = boto3.resource('s3', region_name='us-east-1')

        # Create bucket
        conn.create_bucket(Bucket=TEST_BUCKET)

        yield conn


@pytest.fixture
def s3_storage(mock_s3):
    """S3 backend pointed at the mocked bucket.

    Returns:
        Enabled FileStorage instance.
    """
    return FileStorage(
        bucket_name=TEST_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
    )


@pytest.fixture
def disabled_s3_storage(mock_s3):
    """S3 backend switched off in configuration.

    Returns:
        Disabled FileStorage instance.
    """
    return FileStorage(
        enabled=False,
        bucket_name=TEST_BUCKET,
        access_key='testing',
        secret_key='testing',
        region_name='us-east-1',
    )


@pytest.fixture
def local_storage(tmp_path):
    """Filesystem backend rooted in a temporary directory.

    Returns:
        Enabled LocalFileStorage instance.
    """
    return LocalFileStorage(location=str(tmp_path / 'media'))


@pytest.fixture
def registry():
    """Fresh upload task registry.

    Returns:
        UploadTaskRegistry with a one hour TTL.
    """
    return UploadTaskRegistry(ttl=timedelta(hours=1))


@pytest.fixture
def inline_executor():
    """Executor running uploads synchronously.

    Returns:
        InlineExecutor instance.
    """
    return InlineExecutor()


@pytest.fixture
def staging_dir(settings, tmp_path):
    """Point UPLOAD_STAGING_DIR at a temporary directory.

    Returns:
        Path of the staging directory.
    """
    path = tmp_path / 'staging'
    settings.UPLOAD_STAGING_DIR = path
    return path


@pytest.fixture
def sample_file_content():
    """Sample file content for testing.

    Returns:
        ContentFile with test data.
    """
    return ContentFile(b'test file content', name='test.txt')
