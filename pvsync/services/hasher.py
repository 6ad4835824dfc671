"""Content hashing used as the image dedup key."""

import hashlib
from pathlib import Path

from pvsync.core.exceptions import ContentHashError

CHUNK_SIZE = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """Hex SHA-256 digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: str | Path) -> str:
    """Hex SHA-256 digest of a file, read in chunks."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise ContentHashError("Cannot read image file", path=str(path)) from e
    return digest.hexdigest()
