"""Whole-tree snapshot store.

Every commit owns one directory under ``objects/<hash>/`` holding:

- ``snapshot.tar.gz``: every tracked file, stored under its vault-relative
  path (``domains/...``). Members are sorted and their metadata normalized so
  snapshotting the same tree twice produces identical bytes.
- ``manifest.json``: path, git blob id and size of every file, plus totals.

Both files are written under temporary names and renamed into place, archive
first and manifest last; a snapshot only counts as present when both exist.
Restoring is a destructive overwrite of the tracked root, never a merge.
There is no garbage collection: archives live as long as the vault.
"""

from __future__ import annotations

import gzip
import io
import shutil
import tarfile
from pathlib import Path, PurePosixPath

from pydantic import ValidationError

from ctxvault.config.constants import MANIFEST_FILE_NAME, SNAPSHOT_FILE_NAME
from ctxvault.core.errors import SnapshotCorrupted, SnapshotNotFound, StorageError
from ctxvault.core.vault import Vault, write_json_atomic
from ctxvault.domain.models import FileInfo, Manifest
from ctxvault.services.tree import iter_tracked_files
from ctxvault.utils.hashing import blob_hash
from ctxvault.utils.logger import storage_logger

UNCOMPRESSED_SNAPSHOT_FILE_NAME = "snapshot.tar"


class SnapshotStore:
    """Persists and restores the tracked tree keyed by commit hash."""

    def __init__(self, vault: Vault) -> None:
        self.vault = vault

    # ---- paths ----
    def object_dir(self, commit_hash: str) -> Path:
        return self.vault.objects_dir / commit_hash

    def manifest_path(self, commit_hash: str) -> Path:
        return self.object_dir(commit_hash) / MANIFEST_FILE_NAME

    def archive_path(self, commit_hash: str) -> Path | None:
        """Return the existing archive for ``commit_hash``, if any."""
        object_dir = self.object_dir(commit_hash)
        for name in (SNAPSHOT_FILE_NAME, UNCOMPRESSED_SNAPSHOT_FILE_NAME):
            candidate = object_dir / name
            if candidate.is_file():
                return candidate
        return None

    def has_snapshot(self, commit_hash: str) -> bool:
        return (
            self.archive_path(commit_hash) is not None
            and self.manifest_path(commit_hash).is_file()
        )

    # ---- create ----
    def create_snapshot(self, commit_hash: str) -> Path:
        """Archive the tracked tree and write its manifest.

        Returns:
            Path of the archive inside the object store
        """
        compress = self.vault.settings.compress_snapshots
        object_dir = self.object_dir(commit_hash)
        archive_name = SNAPSHOT_FILE_NAME if compress else UNCOMPRESSED_SNAPSHOT_FILE_NAME
        archive_path = object_dir / archive_name
        tmp_archive = archive_path.with_name(archive_name + ".tmp")

        files: list[FileInfo] = []
        total_size = 0
        archive_written = False
        try:
            object_dir.mkdir(parents=True, exist_ok=True)
            # Drop a stale archive of the other flavour so re-snapshots stay unambiguous
            for stale in (SNAPSHOT_FILE_NAME, UNCOMPRESSED_SNAPSHOT_FILE_NAME):
                if stale != archive_name and (object_dir / stale).exists():
                    (object_dir / stale).unlink()

            with tmp_archive.open("wb") as raw:
                if compress:
                    # mtime=0 keeps the gzip header deterministic
                    stream: io.RawIOBase | gzip.GzipFile = gzip.GzipFile(
                        filename="", mode="wb", fileobj=raw, mtime=0
                    )
                else:
                    stream = raw
                try:
                    with tarfile.open(fileobj=stream, mode="w", format=tarfile.PAX_FORMAT) as tar:
                        for tracked in iter_tracked_files(self.vault):
                            data = tracked.path.read_bytes()
                            tar.addfile(_tar_info(tracked.rel_path, len(data)), io.BytesIO(data))
                            files.append(
                                FileInfo(path=tracked.rel_path, hash=blob_hash(data), size=len(data))
                            )
                            total_size += len(data)
                finally:
                    if compress:
                        stream.close()
            tmp_archive.replace(archive_path)
            archive_written = True

            manifest = Manifest(files=files, total_files=len(files), total_size=total_size)
            write_json_atomic(self.manifest_path(commit_hash), manifest.model_dump(mode="json"))
        except (OSError, tarfile.TarError) as e:
            tmp_archive.unlink(missing_ok=True)
            if archive_written:
                # Archive and manifest exist together or not at all
                archive_path.unlink(missing_ok=True)
                self.manifest_path(commit_hash).unlink(missing_ok=True)
            raise StorageError(f"create snapshot {commit_hash[:7]}", e) from e

        storage_logger.info(
            "Snapshot created",
            commit=commit_hash[:7],
            files=len(files),
            total_size=total_size,
            compressed=compress,
        )
        return archive_path

    # ---- read ----
    def load_manifest(self, commit_hash: str) -> Manifest:
        path = self.manifest_path(commit_hash)
        if not path.is_file():
            raise SnapshotNotFound(commit_hash)
        try:
            return Manifest.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError(f"read manifest {commit_hash[:7]}", e) from e

    # ---- restore ----
    def restore_snapshot(self, commit_hash: str) -> list[str]:
        """Replace the tracked tree with the snapshot of ``commit_hash``.

        Files present in the working tree but absent from the snapshot are
        permanently deleted.

        Returns:
            Vault-relative paths of the restored files
        """
        archive_path = self.archive_path(commit_hash)
        if archive_path is None or not self.manifest_path(commit_hash).is_file():
            raise SnapshotNotFound(commit_hash)

        try:
            with tarfile.open(archive_path, mode="r:*") as tar:
                members = tar.getmembers()
                targets = [(m, self._member_target(commit_hash, m)) for m in members]

                tracked_root = self.vault.tracked_root
                if tracked_root.exists():
                    shutil.rmtree(tracked_root)
                tracked_root.mkdir(parents=True, exist_ok=True)

                restored: list[str] = []
                for member, target in targets:
                    extracted = tar.extractfile(member)
                    if extracted is None:
                        raise SnapshotCorrupted(commit_hash, f"unreadable member {member.name}")
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(extracted.read())
                    restored.append(member.name)
        except (OSError, tarfile.TarError, EOFError) as e:
            raise StorageError(f"restore snapshot {commit_hash[:7]}", e) from e

        storage_logger.info(
            "Snapshot restored", commit=commit_hash[:7], restored=len(restored)
        )
        return restored

    def _member_target(self, commit_hash: str, member: tarfile.TarInfo) -> Path:
        """Map an archive member to its destination, rejecting escapes."""
        if not member.isfile():
            raise SnapshotCorrupted(commit_hash, f"unexpected member type {member.name}")
        name = PurePosixPath(member.name)
        tracked_name = self.vault.tracked_root.name
        if (
            name.is_absolute()
            or ".." in name.parts
            or len(name.parts) < 2
            or name.parts[0] != tracked_name
        ):
            raise SnapshotCorrupted(commit_hash, f"member outside tracked root {member.name}")
        return self.vault.root.joinpath(*name.parts)


def _tar_info(name: str, size: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name=name)
    info.size = size
    info.mode = 0o644
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    return info
