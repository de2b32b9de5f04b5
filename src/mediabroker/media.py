"""Media helpers: artifact descriptors, GIF detection and size reporting."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import math
import re
from typing import Literal
from urllib.parse import urlparse

from mediabroker.errors import ValidationError
from mediabroker.hashing import hash_file

ArtifactKind = Literal["video", "gif", "image"]
ARTIFACT_KINDS: frozenset[str] = frozenset({"video", "gif", "image"})

_CDN_PATTERNS: dict[str, re.Pattern[str]] = {
    "gif": re.compile(r"^/gifs/([a-f0-9]+)\.gif$", re.IGNORECASE),
    "video": re.compile(r"^/videos/([a-f0-9]+)\.(?:mp4|webm|mov|avi|mkv)$", re.IGNORECASE),
    "image": re.compile(r"^/images/([a-f0-9]+)\.(?:png|jpg|jpeg|webp)$", re.IGNORECASE),
}


@dataclass(frozen=True, slots=True)
class Artifact:
    """A produced media file and where it can be fetched from.

    Producers return an ``Artifact`` to have the broker record it in the
    persistent cache.
    """

    content_hash: str
    kind: ArtifactKind
    extension: str
    location: str
    file_size: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in ARTIFACT_KINDS:
            raise ValidationError(
                f"Unknown artifact kind: {self.kind!r}",
                hint=f"Expected one of {sorted(ARTIFACT_KINDS)}",
            )

    @classmethod
    def from_file(cls, path: str | Path, *, kind: ArtifactKind, location: str) -> Artifact:
        """Describe a finished file on disk, hashing its contents."""
        p = Path(path)
        return cls(
            content_hash=hash_file(p),
            kind=kind,
            extension=p.suffix.lower(),
            location=location,
            file_size=p.stat().st_size,
        )


def is_gif_file(filename: str, content_type: str | None = None) -> bool:
    """Return True when the extension or MIME type says GIF."""
    if Path(filename).suffix.lower() == ".gif":
        return True
    return bool(content_type) and content_type.lower() == "image/gif"


def calculate_size_reduction(original_size: int, optimized_size: int) -> int:
    """Percent saved, rounded; negative when the file grew."""
    if original_size == 0:
        return 0
    # Halves round up, not to even.
    return math.floor((original_size - optimized_size) / original_size * 100 + 0.5)


def format_size_mb(size_bytes: int) -> str:
    """Format a byte count like ``6.7mb``."""
    return f"{size_bytes / (1024 * 1024):.1f}mb"


def extract_hash_from_cdn_url(url: str, *, domain_suffix: str) -> str | None:
    """Pull the content hash out of a CDN URL served under *domain_suffix*.

    Recognizes ``/gifs/<hash>.gif``, ``/videos/<hash>.<ext>`` and
    ``/images/<hash>.<ext>``; anything else yields ``None``.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = parsed.hostname or ""
    if not host.endswith(domain_suffix):
        return None
    for pattern in _CDN_PATTERNS.values():
        match = pattern.match(parsed.path)
        if match:
            return match.group(1)
    return None
