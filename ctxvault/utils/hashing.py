"""Content and commit hashing helpers."""

from __future__ import annotations

import hashlib

from dulwich.objects import Blob


def compute_hash(data: bytes) -> str:
    """Return the sha256 hex digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def blob_hash(data: bytes) -> str:
    """Return the git blob id of ``data``.

    Manifests store git-compatible blob ids so a snapshot can be checked
    against ``git hash-object`` output.
    """
    return Blob.from_string(data).id.decode("ascii")
