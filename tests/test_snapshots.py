"""Tests for the whole-tree snapshot store."""

import io
import json
import os
import tarfile

import pytest

from ctxvault.core.errors import SnapshotCorrupted, SnapshotNotFound, StorageError
from ctxvault.services.snapshots import SnapshotStore

HASH_A = "a" * 64
HASH_B = "b" * 64
EMPTY_BLOB_ID = "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"


def _tree(vault):
    return {
        p.relative_to(vault.root).as_posix(): p.read_bytes()
        for p in vault.tracked_root.rglob("*")
        if p.is_file()
    }


def test_round_trip_restores_files_and_bytes(temp_vault, write_file):
    write_file("domains/x/a.md", "# A\n")
    write_file("domains/x/nested/b.md", "bee")
    write_file("domains/y/image.bin", bytes(range(256)))
    before = _tree(temp_vault)

    store = SnapshotStore(temp_vault)
    store.create_snapshot(HASH_A)

    # Mutate everything: edit, delete, add
    write_file("domains/x/a.md", "changed")
    (temp_vault.root / "domains/x/nested/b.md").unlink()
    write_file("domains/z/new.md", "new")

    restored = store.restore_snapshot(HASH_A)

    assert _tree(temp_vault) == before
    assert sorted(restored) == sorted(before)
    assert not (temp_vault.root / "domains/z").exists()


def test_archive_members_use_vault_relative_paths(temp_vault, write_file):
    write_file("domains/x/a.md", "alpha")

    archive = SnapshotStore(temp_vault).create_snapshot(HASH_A)

    assert archive == temp_vault.objects_dir / HASH_A / "snapshot.tar.gz"
    with tarfile.open(archive, "r:gz") as tar:
        assert tar.getnames() == ["domains/x/a.md"]


def test_manifest_lists_git_blob_ids_and_sizes(temp_vault, write_file):
    write_file("domains/x/empty.md", "")
    write_file("domains/x/a.md", "12345")

    store = SnapshotStore(temp_vault)
    store.create_snapshot(HASH_A)
    manifest = store.load_manifest(HASH_A)

    assert [f.path for f in manifest.files] == ["domains/x/a.md", "domains/x/empty.md"]
    assert manifest.total_files == 2
    assert manifest.total_size == 5
    assert manifest.hashes()["domains/x/empty.md"] == EMPTY_BLOB_ID

    raw = json.loads((temp_vault.objects_dir / HASH_A / "manifest.json").read_text())
    assert raw["total_files"] == 2


def test_resnapshot_is_byte_deterministic(temp_vault, write_file):
    write_file("domains/x/a.md", "alpha")
    write_file("domains/y/b.md", "beta")
    store = SnapshotStore(temp_vault)

    first = store.create_snapshot(HASH_A).read_bytes()
    # Touch mtimes; content is unchanged
    for path in temp_vault.tracked_root.rglob("*.md"):
        os.utime(path, (1_000_000, 1_000_000))
    second = store.create_snapshot(HASH_A).read_bytes()

    assert first == second


def test_restore_missing_snapshot_raises(temp_vault):
    with pytest.raises(SnapshotNotFound):
        SnapshotStore(temp_vault).restore_snapshot(HASH_B)


def test_archive_without_manifest_is_not_a_snapshot(temp_vault, write_file):
    write_file("domains/x/a.md", "alpha")
    store = SnapshotStore(temp_vault)
    store.create_snapshot(HASH_A)
    (temp_vault.objects_dir / HASH_A / "manifest.json").unlink()

    assert not store.has_snapshot(HASH_A)
    with pytest.raises(SnapshotNotFound):
        store.restore_snapshot(HASH_A)
    with pytest.raises(SnapshotNotFound):
        store.load_manifest(HASH_A)


def test_failed_manifest_write_removes_archive(temp_vault, write_file, monkeypatch):
    write_file("domains/x/a.md", "alpha")

    def failing_write(path, data):
        raise OSError("disk full")

    monkeypatch.setattr("ctxvault.services.snapshots.write_json_atomic", failing_write)
    store = SnapshotStore(temp_vault)

    with pytest.raises(StorageError):
        store.create_snapshot(HASH_A)

    assert store.archive_path(HASH_A) is None
    assert not store.manifest_path(HASH_A).exists()


def test_restore_rejects_members_escaping_tracked_root(temp_vault, write_file):
    keep = write_file("domains/x/keep.md", "keep me")
    object_dir = temp_vault.objects_dir / HASH_B
    object_dir.mkdir(parents=True)
    with tarfile.open(object_dir / "snapshot.tar.gz", "w:gz") as tar:
        data = b"evil"
        info = tarfile.TarInfo("../evil.txt")
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    (object_dir / "manifest.json").write_text(json.dumps({"files": []}))

    with pytest.raises(SnapshotCorrupted):
        SnapshotStore(temp_vault).restore_snapshot(HASH_B)

    # Validation happens before the tree is touched
    assert keep.read_text() == "keep me"
    assert not (temp_vault.root.parent / "evil.txt").exists()


def test_uncompressed_snapshots(temp_vault, write_file):
    temp_vault.config_manager.update({"context": {"compress_snapshots": False}})
    write_file("domains/x/a.md", "alpha")
    store = SnapshotStore(temp_vault)

    archive = store.create_snapshot(HASH_A)

    assert archive.name == "snapshot.tar"
    with tarfile.open(archive, "r:") as tar:
        assert tar.getnames() == ["domains/x/a.md"]
    write_file("domains/x/a.md", "changed")
    store.restore_snapshot(HASH_A)
    assert (temp_vault.root / "domains/x/a.md").read_text() == "alpha"


def test_ignored_files_are_not_snapshotted(temp_vault, write_file):
    write_file("domains/x/a.md", "alpha")
    write_file("domains/x/.DS_Store", "junk")
    write_file("domains/x/draft.md.swp", "junk")
    write_file("domains/scratch/notes.md", "private")
    (temp_vault.root / ".ctxvaultignore").write_text("# local notes\nscratch/\n")

    store = SnapshotStore(temp_vault)
    store.create_snapshot(HASH_A)

    assert [f.path for f in store.load_manifest(HASH_A).files] == ["domains/x/a.md"]


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
def test_symlinks_are_skipped(temp_vault, write_file, tmp_path):
    outside = tmp_path / "outside.md"
    outside.write_text("outside the vault")
    write_file("domains/x/a.md", "alpha")
    (temp_vault.root / "domains/x").joinpath("link.md").symlink_to(outside)

    store = SnapshotStore(temp_vault)
    store.create_snapshot(HASH_A)

    assert [f.path for f in store.load_manifest(HASH_A).files] == ["domains/x/a.md"]
