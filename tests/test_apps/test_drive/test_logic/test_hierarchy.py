"""Tests for hierarchy engine business logic."""

from datetime import timedelta

import pytest
from django.core.files.base import ContentFile
from django.utils import timezone

from server.apps.drive.exceptions import (
    AuthorizationError,
    BlobIOError,
    ConflictError,
    DuplicateNameError,
    HierarchyIntegrityError,
    InvalidNameError,
    NotFoundError,
    ProtectedEntityError,
    StoreError,
)
from server.apps.drive.models import File, Folder


def _store_file(blob_storage, owner, folder, name, data=b'data'):
    """Create a committed file with its blob, bypassing the pipeline."""
    record = File.objects.create(
        owner=owner,
        folder=folder,
        name=name,
        storage_path=f'{owner.id}/{name}',
        size_bytes=len(data),
        mime_type='text/plain',
    )
    blob_storage.save(record.storage_path, ContentFile(data))
    return record


@pytest.mark.django_db
class TestCreateFolders:
    """Tests for root and subfolder creation."""

    def test_root_exists_after_signup(self, engine, user, root_folder):
        """Test signup already created the root, a second one conflicts."""
        with pytest.raises(ConflictError):
            engine.create_root_folder(user.id)

        assert Folder.objects.filter(owner=user, is_root=True).count() == 1

    def test_create_root_folder(self, engine, user):
        """Test root creation for an owner without one."""
        Folder.objects.filter(owner=user).delete()

        root = engine.create_root_folder(user.id)

        assert root.is_root
        assert root.parent_id is None
        assert root.name == 'Root Folder'

    def test_create_subfolder(self, engine, user, root_folder):
        """Test subfolder is created below its parent."""
        folder = engine.create_subfolder(user.id, root_folder.id, '  Reports ')

        assert folder.parent_id == root_folder.id
        assert folder.name == 'Reports'
        assert not folder.is_root

    def test_create_subfolder_touches_parent(self, engine, user, root_folder):
        """Test creating a subfolder bumps the parent's updated_at."""
        stale = timezone.now() - timedelta(days=1)
        Folder.objects.filter(id=root_folder.id).update(updated_at=stale)

        engine.create_subfolder(user.id, root_folder.id, 'Reports')

        root_folder.refresh_from_db()
        assert root_folder.updated_at > stale

    def test_duplicate_name_same_parent(self, engine, user, root_folder):
        """Test second sibling with the same name is rejected."""
        engine.create_subfolder(user.id, root_folder.id, 'Reports')

        with pytest.raises(DuplicateNameError):
            engine.create_subfolder(user.id, root_folder.id, 'Reports')

        assert Folder.objects.filter(owner=user, name='Reports').count() == 1

    def test_same_name_different_parents(self, engine, user, root_folder):
        """Test the same name is allowed under two different parents."""
        first = engine.create_subfolder(user.id, root_folder.id, 'A')
        second = engine.create_subfolder(user.id, root_folder.id, 'B')

        engine.create_subfolder(user.id, first.id, 'Reports')
        engine.create_subfolder(user.id, second.id, 'Reports')

        assert Folder.objects.filter(owner=user, name='Reports').count() == 2

    def test_names_are_case_sensitive(self, engine, user, root_folder):
        """Test names differing only in case are distinct siblings."""
        engine.create_subfolder(user.id, root_folder.id, 'reports')
        engine.create_subfolder(user.id, root_folder.id, 'Reports')

        assert Folder.objects.filter(parent=root_folder).count() == 2

    def test_race_surfaces_as_duplicate(
        self,
        engine,
        user,
        root_folder,
        monkeypatch,
    ):
        """Test a lost insert race is reported as DuplicateNameError."""
        engine.create_subfolder(user.id, root_folder.id, 'Reports')
        # Simulate a concurrent insert the sibling check did not see
        monkeypatch.setattr(
            engine,
            '_ensure_unique_name',
            lambda *args, **kwargs: None,
        )

        with pytest.raises(DuplicateNameError):
            engine.create_subfolder(user.id, root_folder.id, 'Reports')

    def test_create_in_foreign_folder(self, engine, user, other_root_folder):
        """Test a foreign parent looks missing."""
        with pytest.raises(NotFoundError):
            engine.create_subfolder(user.id, other_root_folder.id, 'Mine')

    def test_invalid_name(self, engine, user, root_folder):
        """Test names with separators are rejected."""
        with pytest.raises(InvalidNameError):
            engine.create_subfolder(user.id, root_folder.id, 'a/b')


@pytest.mark.django_db
class TestReadOperations:
    """Tests for resolve_folder, build_folder_tree and ancestor paths."""

    def test_resolve_root_by_default(self, engine, user, root_folder):
        """Test resolving without ID returns the root folder."""
        view = engine.resolve_folder(user.id)

        assert view.folder == root_folder
        assert view.parent is None

    def test_resolve_folder_children(
        self,
        engine,
        blob_storage,
        user,
        root_folder,
    ):
        """Test children are sorted by name with the parent reference."""
        docs = engine.create_subfolder(user.id, root_folder.id, 'docs')
        engine.create_subfolder(user.id, docs.id, 'zeta')
        engine.create_subfolder(user.id, docs.id, 'alpha')
        _store_file(blob_storage, user, docs, 'b.txt')
        _store_file(blob_storage, user, docs, 'a.txt')

        view = engine.resolve_folder(user.id, docs.id)

        assert view.parent == root_folder
        assert [sub.name for sub in view.subfolders] == ['alpha', 'zeta']
        assert [child.name for child in view.files] == ['a.txt', 'b.txt']

    def test_resolve_recent_ordering(self, engine, user, root_folder):
        """Test 'recent' ordering puts the latest update first."""
        old = engine.create_subfolder(user.id, root_folder.id, 'old')
        new = engine.create_subfolder(user.id, root_folder.id, 'new')
        Folder.objects.filter(id=old.id).update(
            updated_at=timezone.now() - timedelta(days=1),
        )

        view = engine.resolve_folder(user.id, root_folder.id, 'recent')

        assert [sub.id for sub in view.subfolders] == [new.id, old.id]

    def test_resolve_foreign_folder(self, engine, user, other_root_folder):
        """Test another owner's folder looks missing."""
        with pytest.raises(NotFoundError):
            engine.resolve_folder(user.id, other_root_folder.id)

    def test_build_folder_tree(self, engine, user, other_user, root_folder):
        """Test tree covers every folder of the owner and nothing else."""
        docs = engine.create_subfolder(user.id, root_folder.id, 'docs')
        engine.create_subfolder(user.id, docs.id, '2024')
        engine.create_subfolder(user.id, root_folder.id, 'photos')
        other_root = Folder.objects.get(owner=other_user)
        engine.create_subfolder(other_user.id, other_root.id, 'theirs')

        tree = engine.build_folder_tree(user.id)

        assert tree.folder == root_folder
        assert tree.count() == Folder.objects.filter(owner=user).count()
        assert [child.folder.name for child in tree.children] == [
            'docs',
            'photos',
        ]

    def test_build_folder_tree_without_root(self, engine, user):
        """Test an owner without folders has no valid tree."""
        Folder.objects.filter(owner=user).delete()

        with pytest.raises(HierarchyIntegrityError):
            engine.build_folder_tree(user.id)

    def test_ancestor_path_of_root(self, engine, user, root_folder):
        """Test root resolves to a single element path."""
        path = engine.resolve_ancestor_path(user.id, root_folder.id)

        assert [segment.id for segment in path] == [root_folder.id]

    def test_ancestor_path_depth(self, engine, user, root_folder):
        """Test a folder at depth D has D+1 path elements, root first."""
        parent_id = root_folder.id
        created = []
        for depth in range(1, 4):
            folder = engine.create_subfolder(
                user.id,
                parent_id,
                f'level-{depth}',
            )
            created.append(folder)
            parent_id = folder.id

        path = engine.resolve_ancestor_path(user.id, created[-1].id)

        assert len(path) == 4
        assert [segment.id for segment in path] == [
            root_folder.id,
            *(folder.id for folder in created),
        ]

    def test_ancestor_path_of_foreign_folder(
        self,
        engine,
        user,
        other_root_folder,
    ):
        """Test another owner's folder looks missing."""
        with pytest.raises(NotFoundError):
            engine.resolve_ancestor_path(user.id, other_root_folder.id)


@pytest.mark.django_db
class TestRenameEntry:
    """Tests for rename_entry."""

    def test_rename_file_changes_only_name(
        self,
        engine,
        blob_storage,
        user,
        root_folder,
    ):
        """Test renaming a file keeps folder, path and size."""
        record = _store_file(blob_storage, user, root_folder, 'a.txt')
        File.objects.filter(id=record.id).update(
            updated_at=timezone.now() - timedelta(days=1),
        )
        before = File.objects.get(id=record.id)

        engine.rename_entry(user.id, record.id, 'file', 'b.txt')

        after = File.objects.get(id=record.id)
        assert after.name == 'b.txt'
        assert after.updated_at > before.updated_at
        assert after.folder_id == before.folder_id
        assert after.storage_path == before.storage_path
        assert after.size_bytes == before.size_bytes
        assert after.mime_type == before.mime_type

    def test_rename_folder(self, engine, user, root_folder):
        """Test renaming a folder touches its parent."""
        folder = engine.create_subfolder(user.id, root_folder.id, 'old')
        stale = timezone.now() - timedelta(days=1)
        Folder.objects.filter(id=root_folder.id).update(updated_at=stale)

        renamed = engine.rename_entry(user.id, folder.id, 'folder', 'new')

        root_folder.refresh_from_db()
        assert renamed.name == 'new'
        assert root_folder.updated_at > stale

    def test_rename_folder_to_own_name(self, engine, user, root_folder):
        """Test renaming a folder to its current name is allowed."""
        folder = engine.create_subfolder(user.id, root_folder.id, 'same')

        renamed = engine.rename_entry(user.id, folder.id, 'folder', 'same')

        assert renamed.name == 'same'

    def test_rename_folder_to_sibling_name(self, engine, user, root_folder):
        """Test renaming onto an existing sibling name is rejected."""
        engine.create_subfolder(user.id, root_folder.id, 'taken')
        folder = engine.create_subfolder(user.id, root_folder.id, 'free')

        with pytest.raises(DuplicateNameError):
            engine.rename_entry(user.id, folder.id, 'folder', 'taken')

    def test_rename_root_forbidden(self, engine, user, root_folder):
        """Test the root folder cannot be renamed."""
        with pytest.raises(ProtectedEntityError):
            engine.rename_entry(user.id, root_folder.id, 'folder', 'Mine')

        root_folder.refresh_from_db()
        assert root_folder.name == 'Root Folder'

    def test_rename_foreign_file(
        self,
        engine,
        blob_storage,
        user,
        other_user,
        other_root_folder,
    ):
        """Test another owner's file looks missing."""
        record = _store_file(
            blob_storage,
            other_user,
            other_root_folder,
            'secret.txt',
        )

        with pytest.raises(NotFoundError):
            engine.rename_entry(user.id, record.id, 'file', 'mine.txt')

    def test_rename_unknown_kind(self, engine, user, root_folder):
        """Test unknown entry kinds are rejected."""
        with pytest.raises(ValueError, match='Unknown entry kind'):
            engine.rename_entry(user.id, root_folder.id, 'link', 'x')


@pytest.mark.django_db
class TestDeleteEntry:
    """Tests for delete_entry."""

    @pytest.fixture
    def populated(self, engine, blob_storage, user, root_folder):
        """Folder with 2 subfolders (3 files, empty) and 1 direct file.

        Returns:
            Tuple of (target folder, list of storage paths).
        """
        target = engine.create_subfolder(user.id, root_folder.id, 'target')
        full = engine.create_subfolder(user.id, target.id, 'full')
        engine.create_subfolder(user.id, target.id, 'empty')
        records = [
            _store_file(blob_storage, user, full, f'{index}.txt')
            for index in range(3)
        ]
        records.append(
            _store_file(blob_storage, user, target, 'direct.txt'),
        )
        return target, [record.storage_path for record in records]

    def test_delete_folder_recursively(
        self,
        engine,
        blob_storage,
        user,
        root_folder,
        populated,
    ):
        """Test every row and blob below the folder is removed."""
        target, storage_paths = populated

        report = engine.delete_entry(user.id, target.id, 'folder')

        assert report.folders_deleted == 3
        assert report.files_deleted == 4
        assert report.blobs_failed == 0
        assert list(Folder.objects.filter(owner=user)) == [root_folder]
        assert not File.objects.filter(owner=user).exists()
        for storage_path in storage_paths:
            assert not blob_storage.exists(storage_path)

    def test_delete_folder_with_missing_blob(
        self,
        engine,
        blob_storage,
        user,
        populated,
        monkeypatch,
    ):
        """Test blob failures do not stop the metadata cleanup."""
        target, storage_paths = populated
        attempted = []
        original_discard = blob_storage.discard

        def flaky_discard(name):
            attempted.append(name)
            if name == storage_paths[0]:
                return False
            return original_discard(name)

        monkeypatch.setattr(blob_storage, 'discard', flaky_discard)

        report = engine.delete_entry(user.id, target.id, 'folder')

        assert sorted(attempted) == sorted(storage_paths)
        assert report.blobs_failed == 1
        assert report.files_deleted == 4
        assert not File.objects.filter(owner=user).exists()

    def test_delete_root_forbidden(self, engine, user, root_folder, populated):
        """Test root deletion is refused and leaves data untouched."""
        folders_before = Folder.objects.filter(owner=user).count()
        files_before = File.objects.filter(owner=user).count()

        with pytest.raises(ProtectedEntityError):
            engine.delete_entry(user.id, root_folder.id, 'folder')

        assert Folder.objects.filter(owner=user).count() == folders_before
        assert File.objects.filter(owner=user).count() == files_before

    def test_delete_with_foreign_descendant(
        self,
        engine,
        user,
        other_user,
        populated,
    ):
        """Test a foreign descendant aborts before anything is deleted."""
        target, _ = populated
        Folder.objects.create(owner=other_user, name='intruder', parent=target)
        folders_before = Folder.objects.count()

        with pytest.raises(AuthorizationError):
            engine.delete_entry(user.id, target.id, 'folder')

        assert Folder.objects.count() == folders_before
        assert File.objects.filter(owner=user).count() == 4

    def test_delete_rolls_back_on_store_failure(
        self,
        engine,
        metadata_store,
        user,
        populated,
        monkeypatch,
    ):
        """Test a metadata failure mid-way keeps every row."""
        target, _ = populated
        original_delete = metadata_store.delete_folder

        def failing_delete(owner_id, folder_id):
            if folder_id == target.id:
                raise StoreError('connection lost')
            return original_delete(owner_id, folder_id)

        monkeypatch.setattr(metadata_store, 'delete_folder', failing_delete)

        with pytest.raises(StoreError):
            engine.delete_entry(user.id, target.id, 'folder')

        assert Folder.objects.filter(owner=user).count() == 4
        assert File.objects.filter(owner=user).count() == 4

    def test_delete_picks_up_late_children(
        self,
        engine,
        metadata_store,
        blob_storage,
        user,
        root_folder,
        monkeypatch,
    ):
        """Test a child created after expansion is deleted in the same pass."""
        target = engine.create_subfolder(user.id, root_folder.id, 'target')
        engine.create_subfolder(user.id, target.id, 'first')
        original_list = metadata_store.list_child_folders
        target_calls = []

        def racing_list(owner_id, folder_id, *args, **kwargs):
            if folder_id == target.id:
                target_calls.append(folder_id)
                if len(target_calls) == 2:
                    late = Folder.objects.create(
                        owner=user,
                        name='late',
                        parent=target,
                    )
                    _store_file(blob_storage, user, late, 'late.txt')
            return original_list(owner_id, folder_id, *args, **kwargs)

        monkeypatch.setattr(metadata_store, 'list_child_folders', racing_list)

        report = engine.delete_entry(user.id, target.id, 'folder')

        assert report.folders_deleted == 3
        assert report.files_deleted == 1
        assert list(Folder.objects.filter(owner=user)) == [root_folder]
        assert not File.objects.filter(owner=user).exists()

    def test_delete_tolerates_vanished_folder(
        self,
        engine,
        metadata_store,
        user,
        root_folder,
        populated,
        monkeypatch,
        caplog,
    ):
        """Test a folder removed concurrently is logged and skipped."""
        target, _ = populated
        empty = Folder.objects.get(owner=user, name='empty')
        original_delete = metadata_store.delete_folder

        def racing_delete(owner_id, folder_id):
            if folder_id == empty.id:
                Folder.objects.filter(id=empty.id).delete()
            return original_delete(owner_id, folder_id)

        monkeypatch.setattr(metadata_store, 'delete_folder', racing_delete)

        report = engine.delete_entry(user.id, target.id, 'folder')

        assert report.folders_deleted == 2
        assert report.files_deleted == 4
        assert f'Folder {empty.id} vanished' in caplog.text
        assert list(Folder.objects.filter(owner=user)) == [root_folder]

    def test_delete_file(self, engine, blob_storage, user, root_folder):
        """Test file row and blob are removed."""
        record = _store_file(blob_storage, user, root_folder, 'a.txt')

        report = engine.delete_entry(user.id, record.id, 'file')

        assert report.files_deleted == 1
        assert not File.objects.filter(id=record.id).exists()
        assert not blob_storage.exists(record.storage_path)

    def test_delete_file_twice(self, engine, blob_storage, user, root_folder):
        """Test deleting an already deleted file fails both times."""
        record = _store_file(blob_storage, user, root_folder, 'a.txt')
        keep = _store_file(blob_storage, user, root_folder, 'b.txt')
        engine.delete_entry(user.id, record.id, 'file')

        for _ in range(2):
            with pytest.raises(NotFoundError):
                engine.delete_entry(user.id, record.id, 'file')

        assert File.objects.filter(owner=user).get() == keep
        assert blob_storage.exists(keep.storage_path)

    def test_delete_file_race_keeps_folder_untouched(
        self,
        engine,
        metadata_store,
        blob_storage,
        user,
        root_folder,
        monkeypatch,
    ):
        """Test losing a delete race leaves the parent folder as it was."""
        record = _store_file(blob_storage, user, root_folder, 'a.txt')
        stale = timezone.now() - timedelta(days=1)
        Folder.objects.filter(id=root_folder.id).update(updated_at=stale)
        monkeypatch.setattr(
            metadata_store,
            'delete_file',
            lambda owner_id, file_id: 0,
        )

        with pytest.raises(NotFoundError):
            engine.delete_entry(user.id, record.id, 'file')

        root_folder.refresh_from_db()
        assert root_folder.updated_at == stale
        assert blob_storage.exists(record.storage_path)

    def test_delete_folder_twice(self, engine, user, root_folder):
        """Test deleting an already deleted folder fails both times."""
        folder = engine.create_subfolder(user.id, root_folder.id, 'gone')
        engine.delete_entry(user.id, folder.id, 'folder')

        for _ in range(2):
            with pytest.raises(NotFoundError):
                engine.delete_entry(user.id, folder.id, 'folder')

    def test_delete_foreign_file(
        self,
        engine,
        blob_storage,
        user,
        other_user,
        other_root_folder,
    ):
        """Test another owner's file cannot be deleted."""
        record = _store_file(
            blob_storage,
            other_user,
            other_root_folder,
            'secret.txt',
        )

        with pytest.raises(NotFoundError):
            engine.delete_entry(user.id, record.id, 'file')

        assert File.objects.filter(id=record.id).exists()


@pytest.mark.django_db
class TestStreamFileBytes:
    """Tests for stream_file_bytes."""

    def test_stream(self, engine, blob_storage, user, root_folder):
        """Test streaming returns the blob content."""
        record = _store_file(
            blob_storage,
            user,
            root_folder,
            'a.txt',
            b'hello world',
        )

        assert b''.join(engine.stream_file_bytes(user.id, record.id)) == (
            b'hello world'
        )

    def test_stream_foreign_file(
        self,
        engine,
        blob_storage,
        user,
        other_user,
        other_root_folder,
    ):
        """Test another owner's file looks missing."""
        record = _store_file(
            blob_storage,
            other_user,
            other_root_folder,
            'secret.txt',
        )

        with pytest.raises(NotFoundError):
            engine.stream_file_bytes(user.id, record.id)

    def test_stream_path_outside_owner(self, engine, user, root_folder):
        """Test a row pointing into another directory is refused."""
        record = File.objects.create(
            owner=user,
            folder=root_folder,
            name='escape.txt',
            storage_path=f'{user.id + 1}/escape.txt',
            size_bytes=1,
            mime_type='text/plain',
        )

        with pytest.raises(AuthorizationError):
            engine.stream_file_bytes(user.id, record.id)

    def test_stream_missing_blob(self, engine, user, root_folder):
        """Test a missing blob fails before streaming starts."""
        record = File.objects.create(
            owner=user,
            folder=root_folder,
            name='lost.txt',
            storage_path=f'{user.id}/lost.txt',
            size_bytes=1,
            mime_type='text/plain',
        )

        with pytest.raises(BlobIOError):
            engine.stream_file_bytes(user.id, record.id)
