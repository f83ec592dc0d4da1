"""Tests for upload orchestration."""

import hashlib
import io
from concurrent.futures import Executor, Future
from unittest.mock import patch

import pytest
from django.core.files.base import ContentFile

from server.apps.files.exceptions import (
    BackendDisabledError,
    EmptyFileError,
    FileRecordNotFoundError,
    FileTooLargeError,
    HashComputationError,
    NotAFolderError,
    OwnerNotFoundError,
    UploadFailedError,
)
from server.apps.files.logic.file_operations import create_folder, delete_file
from server.apps.files.logic.upload_operations import (
    FAST_UPLOAD_MESSAGE,
    UPLOAD_CANCELLED_MESSAGE,
    get_upload_executor,
    get_upload_tasks,
    resolve_upload_destination,
    run_upload_task,
    submit_upload,
    upload_file,
)
from server.apps.files.logic.upload_tasks import (
    UPLOAD_COMPLETE_MESSAGE,
    UploadTaskRegistry,
)
from server.apps.files.models import File

_CONTENT = b'hello'


class CancellingExecutor(Executor):
    """Executor whose jobs are cancelled before they start."""

    def submit(self, fn, /, *args, **kwargs):
        future = Future()
        future.cancel()
        return future


class UnseekableStream(io.RawIOBase):
    """Readable stream without seek support, like a pipe."""

    def __init__(self, content):
        super().__init__()
        self._buffer = io.BytesIO(content)

    def readable(self):
        return True

    def readinto(self, buffer):
        chunk = self._buffer.read(len(buffer))
        buffer[:len(chunk)] = chunk
        return len(chunk)


def _stored_keys(mock_s3):
    return [obj.key for obj in mock_s3.Bucket('cloud-drive').objects.all()]


@pytest.mark.django_db
class TestUploadFile:
    """Tests for synchronous upload_file."""

    def test_upload_creates_record_and_object(self, user, s3_storage, mock_s3):
        """Test new content is stored and recorded with its digest."""
        file_instance = upload_file(
            user,
            ContentFile(_CONTENT),
            'greeting.txt',
            storage=s3_storage,
        )

        assert file_instance.user == user
        assert file_instance.filename == 'greeting.txt'
        assert file_instance.original_filename == 'greeting.txt'
        assert file_instance.size_bytes == len(_CONTENT)
        assert file_instance.mime_type == 'text/plain'
        assert file_instance.checksum_sha256 == hashlib.sha256(_CONTENT).hexdigest()
        assert file_instance.path.startswith(f'files/{user.id}/')
        assert file_instance.parent is None
        assert _stored_keys(mock_s3) == [file_instance.path]

    def test_upload_plain_stream(self, user, s3_storage, mock_s3):
        """Test raw binary streams are accepted."""
        file_instance = upload_file(
            user,
            io.BytesIO(_CONTENT),
            'greeting.txt',
            storage=s3_storage,
        )

        assert file_instance.size_bytes == len(_CONTENT)
        assert s3_storage.retrieve(file_instance.path) == _CONTENT

    def test_upload_into_folder(self, user, s3_storage):
        """Test content is stored under the folder's path."""
        folder = create_folder(user, 'photos')

        file_instance = upload_file(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            parent_id=folder.id,
            storage=s3_storage,
        )

        assert file_instance.parent == folder
        assert file_instance.path.startswith(f'{folder.path}/')

    def test_declared_content_type(self, user, s3_storage):
        """Test declared content type wins over detection."""
        file_instance = upload_file(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            content_type='application/x-custom',
            storage=s3_storage,
        )

        assert file_instance.mime_type == 'application/x-custom'

    def test_identical_content_deduplicated(self, user, s3_storage, mock_s3):
        """Test second identical upload links the stored object."""
        with patch.object(s3_storage, 'store', wraps=s3_storage.store) as store:
            first = upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)
            second = upload_file(user, ContentFile(_CONTENT), 'b.txt', storage=s3_storage)

        assert first.id != second.id
        assert second.path == first.path
        assert second.filename == 'b.txt'
        assert second.checksum_sha256 == first.checksum_sha256
        assert store.call_count == 1
        assert len(_stored_keys(mock_s3)) == 1

    def test_dedup_is_per_owner(self, user, other_user, s3_storage, mock_s3):
        """Test identical content from another user is stored again."""
        first = upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)
        second = upload_file(
            other_user,
            ContentFile(_CONTENT),
            'a.txt',
            storage=s3_storage,
        )

        assert second.path != first.path
        assert len(_stored_keys(mock_s3)) == 2

    def test_dedup_hit_keeps_target_folder(self, user, s3_storage):
        """Test the linked record lands in the requested folder."""
        upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)
        folder = create_folder(user, 'copies')

        linked = upload_file(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            parent_id=folder.id,
            storage=s3_storage,
        )

        assert linked.parent == folder

    def test_disabled_backend(self, user, disabled_s3_storage, mock_s3):
        """Test disabled storage fails before hashing or storing."""
        with patch(
            'server.apps.files.logic.upload_operations.calculate_checksum',
        ) as checksum:
            with pytest.raises(BackendDisabledError):
                upload_file(
                    user,
                    ContentFile(_CONTENT),
                    'a.txt',
                    storage=disabled_s3_storage,
                )

        checksum.assert_not_called()
        assert not File.all_objects.exists()
        assert _stored_keys(mock_s3) == []

    def test_too_large(self, user, s3_storage, settings):
        """Test uploads above the limit are rejected."""
        settings.UPLOAD_MAX_SIZE_BYTES = 3

        with pytest.raises(FileTooLargeError) as exc_info:
            upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)

        assert exc_info.value.size_bytes == len(_CONTENT)
        assert exc_info.value.limit_bytes == 3
        assert exc_info.value.http_status == 413

    def test_missing_parent(self, user, s3_storage):
        """Test unknown parent folder raises FileRecordNotFoundError."""
        with pytest.raises(FileRecordNotFoundError):
            upload_file(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                parent_id=99999,
                storage=s3_storage,
            )

    def test_foreign_parent(self, user, other_user, s3_storage):
        """Test another user's folder cannot be a target."""
        folder = create_folder(other_user, 'theirs')

        with pytest.raises(FileRecordNotFoundError):
            upload_file(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                parent_id=folder.id,
                storage=s3_storage,
            )

    def test_parent_is_file(self, user, s3_storage):
        """Test a plain file cannot be a parent."""
        plain = upload_file(user, ContentFile(b'x'), 'x.txt', storage=s3_storage)

        with pytest.raises(NotAFolderError):
            upload_file(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                parent_id=plain.id,
                storage=s3_storage,
            )

    def test_backend_failure_persists_nothing(self, user, s3_storage):
        """Test no record is created when the backend fails."""
        with patch.object(
            s3_storage,
            'store',
            side_effect=UploadFailedError('connection reset'),
        ):
            with pytest.raises(UploadFailedError):
                upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)

        assert not File.all_objects.exists()


@pytest.mark.django_db
class TestSubmitUpload:
    """Tests for asynchronous submit_upload and run_upload_task."""

    def test_upload_completes_task(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test task reaches 100 percent and the staged copy is removed."""
        task_id = submit_upload(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            len(_CONTENT),
            registry,
            inline_executor,
            storage=s3_storage,
        )

        task = registry.get(task_id)
        assert task.completed is True
        assert task.success is True
        assert task.progress == 100.0
        assert task.bytes_transferred == len(_CONTENT)
        assert task.message == UPLOAD_COMPLETE_MESSAGE

        file_instance = File.objects.get(user=user)
        assert file_instance.filename == 'a.txt'
        assert s3_storage.retrieve(file_instance.path) == _CONTENT
        assert list(staging_dir.iterdir()) == []

    def test_caller_supplied_task_id(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test the caller can choose the task id."""
        task_id = submit_upload(
            user,
            io.BytesIO(_CONTENT),
            'a.txt',
            len(_CONTENT),
            registry,
            inline_executor,
            storage=s3_storage,
            task_id='client-task-1',
        )

        assert task_id == 'client-task-1'
        assert registry.get('client-task-1').success is True

    def test_upload_into_folder(
        self,
        user,
        local_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test asynchronous upload honours the parent folder."""
        folder = create_folder(user, 'docs')

        submit_upload(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            len(_CONTENT),
            registry,
            inline_executor,
            parent_id=folder.id,
            storage=local_storage,
        )

        file_instance = File.objects.get(user=user, is_folder=False)
        assert file_instance.parent == folder
        assert file_instance.path.startswith(f'{folder.path}/')
        assert local_storage.retrieve(file_instance.path) == _CONTENT

    def test_dedup_hit_short_circuits(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test duplicate content completes instantly without transfer."""
        first = upload_file(user, ContentFile(_CONTENT), 'a.txt', storage=s3_storage)

        with patch.object(
            s3_storage,
            'store_with_progress',
            wraps=s3_storage.store_with_progress,
        ) as store_with_progress:
            task_id = submit_upload(
                user,
                ContentFile(_CONTENT),
                'b.txt',
                len(_CONTENT),
                registry,
                inline_executor,
                storage=s3_storage,
            )

        store_with_progress.assert_not_called()
        task = registry.get(task_id)
        assert task.success is True
        assert task.progress == 100.0
        assert task.message == FAST_UPLOAD_MESSAGE

        second = File.objects.get(filename='b.txt')
        assert second.id != first.id
        assert second.path == first.path
        assert list(staging_dir.iterdir()) == []

    def test_empty_file_rejected(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test empty uploads fail their task and are never staged."""
        with pytest.raises(EmptyFileError):
            submit_upload(
                user,
                ContentFile(b''),
                'empty.txt',
                0,
                registry,
                inline_executor,
                storage=s3_storage,
                task_id='task-empty',
            )

        task = registry.get('task-empty')
        assert task.completed is True
        assert task.success is False
        assert task.message.startswith('File is empty')
        assert inline_executor.submitted == 0
        assert not staging_dir.exists()

    def test_too_large_rejected(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
        settings,
    ):
        """Test oversized uploads fail their task."""
        settings.UPLOAD_MAX_SIZE_BYTES = 3

        with pytest.raises(FileTooLargeError):
            submit_upload(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                len(_CONTENT),
                registry,
                inline_executor,
                storage=s3_storage,
                task_id='task-big',
            )

        assert registry.get('task-big').success is False
        assert inline_executor.submitted == 0

    def test_too_large_with_understated_size(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
        settings,
    ):
        """Test the limit applies to the real content, not the declared size."""
        settings.UPLOAD_MAX_SIZE_BYTES = 10

        with pytest.raises(FileTooLargeError) as exc_info:
            submit_upload(
                user,
                ContentFile(b'x' * 100),
                'big.bin',
                5,
                registry,
                inline_executor,
                storage=s3_storage,
                task_id='task-big',
            )

        assert exc_info.value.size_bytes == 100
        assert registry.get('task-big').success is False
        assert inline_executor.submitted == 0
        assert not File.all_objects.exists()

    def test_staged_size_checked_against_limit(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
        settings,
    ):
        """Test content larger than its reported size is caught once staged."""
        settings.UPLOAD_MAX_SIZE_BYTES = 10
        content = ContentFile(b'x' * 100)
        content.size = 5

        with pytest.raises(FileTooLargeError):
            submit_upload(
                user,
                content,
                'big.bin',
                5,
                registry,
                inline_executor,
                storage=s3_storage,
                task_id='task-big',
            )

        assert registry.get('task-big').success is False
        assert inline_executor.submitted == 0
        assert list(staging_dir.iterdir()) == []

    def test_progress_uses_real_size(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test a wrong declared size does not leak into task or record."""
        content = b'x' * 100

        task_id = submit_upload(
            user,
            ContentFile(content),
            'a.bin',
            5,
            registry,
            inline_executor,
            storage=s3_storage,
        )

        task = registry.get(task_id)
        assert task.success is True
        assert task.total_size == len(content)
        assert task.bytes_transferred == len(content)
        assert File.objects.get(user=user).size_bytes == len(content)

    def test_unmeasurable_stream_rejected(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test a stream that cannot seek fails with a service error."""
        with pytest.raises(UploadFailedError):
            submit_upload(
                user,
                UnseekableStream(_CONTENT),
                'a.txt',
                len(_CONTENT),
                registry,
                inline_executor,
                storage=s3_storage,
                task_id='task-pipe',
            )

        assert registry.get('task-pipe').success is False
        assert inline_executor.submitted == 0

    def test_disabled_backend_rejected(
        self,
        user,
        disabled_s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test disabled storage fails the task before any work."""
        with pytest.raises(BackendDisabledError):
            submit_upload(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                len(_CONTENT),
                registry,
                inline_executor,
                storage=disabled_s3_storage,
                task_id='task-off',
            )

        task = registry.get('task-off')
        assert task.completed is True
        assert task.success is False
        assert task.message.startswith('Storage backend is not enabled')
        assert inline_executor.submitted == 0

    def test_backend_failure_fails_task(
        self,
        user,
        s3_storage,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test transfer errors end up in the task and the future."""
        with patch.object(
            s3_storage,
            'store_with_progress',
            side_effect=UploadFailedError('connection reset'),
        ):
            task_id = submit_upload(
                user,
                ContentFile(_CONTENT),
                'a.txt',
                len(_CONTENT),
                registry,
                inline_executor,
                storage=s3_storage,
            )

        task = registry.get(task_id)
        assert task.completed is True
        assert task.success is False
        assert 'connection reset' in task.message
        assert task.progress < 100
        assert not File.all_objects.exists()
        assert list(staging_dir.iterdir()) == []

    def test_cancelled_job_fails_task(
        self,
        user,
        s3_storage,
        registry,
        staging_dir,
    ):
        """Test a job cancelled before it ran fails its task and cleans up."""
        task_id = submit_upload(
            user,
            ContentFile(_CONTENT),
            'a.txt',
            len(_CONTENT),
            registry,
            CancellingExecutor(),
            storage=s3_storage,
        )

        task = registry.get(task_id)
        assert task.success is False
        assert task.message == UPLOAD_CANCELLED_MESSAGE
        assert list(staging_dir.iterdir()) == []


@pytest.mark.django_db
class TestRunUploadTask:
    """Tests for the worker body."""

    def test_unknown_owner(self, s3_storage, registry, tmp_path):
        """Test missing owner fails the task and removes the staged copy."""
        staged = tmp_path / 'staged.part'
        staged.write_bytes(_CONTENT)
        registry.create('task-1', 'a.txt', len(_CONTENT))

        with pytest.raises(OwnerNotFoundError):
            run_upload_task(
                staged,
                'a.txt',
                len(_CONTENT),
                99999,
                'task-1',
                registry,
                storage=s3_storage,
            )

        assert registry.get('task-1').success is False
        assert not staged.exists()

    def test_missing_staged_file(self, user, s3_storage, registry, tmp_path):
        """Test vanished staged copy fails hashing."""
        registry.create('task-1', 'a.txt', len(_CONTENT))

        with pytest.raises(HashComputationError):
            run_upload_task(
                tmp_path / 'gone.part',
                'a.txt',
                len(_CONTENT),
                user.id,
                'task-1',
                registry,
                storage=s3_storage,
            )

        task = registry.get('task-1')
        assert task.completed is True
        assert task.message.startswith('Could not compute file checksum')


@pytest.mark.django_db
class TestDedupLifecycle:
    """Upload, deduplicate and delete the same content end to end."""

    def test_shared_object_removed_with_last_reference(
        self,
        user,
        s3_storage,
        mock_s3,
        registry,
        inline_executor,
        staging_dir,
    ):
        """Test stored object outlives all but the last record."""
        first = upload_file(user, ContentFile(_CONTENT), 'hello.txt', storage=s3_storage)

        task_id = submit_upload(
            user,
            ContentFile(_CONTENT),
            'hello-again.txt',
            len(_CONTENT),
            registry,
            inline_executor,
            storage=s3_storage,
        )
        second = File.objects.get(filename='hello-again.txt')
        assert second.path == first.path
        assert registry.get(task_id).progress == 100.0

        with patch.object(s3_storage, 'remove', wraps=s3_storage.remove) as remove:
            delete_file(first.id, user, storage=s3_storage)
            remove.assert_not_called()
            assert _stored_keys(mock_s3) == [first.path]

            delete_file(second.id, user, storage=s3_storage)
            remove.assert_called_once_with(first.path)

        assert _stored_keys(mock_s3) == []
        assert File.all_objects.filter(is_deleted=True).count() == 2


@pytest.mark.django_db
def test_resolve_upload_destination(user):
    """Test root and folder destinations."""
    folder = create_folder(user, 'photos')

    assert resolve_upload_destination(user, None) == f'files/{user.id}'
    assert resolve_upload_destination(user, folder) == f'files/{user.id}/photos'


def test_app_runtime_accessors():
    """Test registry and pool are built once per process."""
    assert isinstance(get_upload_tasks(), UploadTaskRegistry)
    assert get_upload_tasks() is get_upload_tasks()
    assert isinstance(get_upload_executor(), Executor)
    assert get_upload_executor() is get_upload_executor()
