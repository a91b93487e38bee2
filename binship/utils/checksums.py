"""File checksum helpers."""

import hashlib
from pathlib import Path

CHUNK_SIZE = 1024 * 1024


def file_checksum(path: Path) -> tuple[str, int]:
    """Return the SHA-256 hex digest and size of a file.

    Blocking; call through ``asyncio.to_thread`` from async code.
    """
    digest = hashlib.sha256()
    size = 0
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            digest.update(chunk)
            size += len(chunk)
    return digest.hexdigest(), size
