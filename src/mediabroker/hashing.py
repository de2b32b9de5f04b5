"""Content hashing primitives.

All digests are lowercase hex SHA-256 so keys and content hashes share one
fixed length.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

HASH_ALGORITHM = "sha256"
DIGEST_HEX_LENGTH = 64

_FILE_CHUNK_BYTES = 1024 * 1024


def hash_bytes(data: bytes) -> str:
    """Hash arbitrary bytes to lowercase hex."""
    return hashlib.sha256(data).hexdigest()


def hash_string(value: str) -> str:
    """Hash a string's UTF-8 encoding to lowercase hex."""
    return hash_bytes(str(value).encode("utf-8"))


def hash_parts(parts: Iterable[str | bytes | None]) -> str:
    """Hash multiple parts in order without concatenating them.

    ``None`` parts are skipped; strings are UTF-8 encoded.
    """
    hasher = hashlib.sha256()
    for part in parts:
        if part is None:
            continue
        if isinstance(part, str):
            hasher.update(part.encode("utf-8"))
        else:
            hasher.update(part)
    return hasher.hexdigest()


def hash_file(path: str | Path) -> str:
    """Hash a file's contents, streaming in fixed-size chunks."""
    hasher = hashlib.sha256()
    with Path(path).open("rb") as fh:
        for chunk in iter(lambda: fh.read(_FILE_CHUNK_BYTES), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
