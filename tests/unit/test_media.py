"""Media helpers: artifacts, GIF detection, size formatting, CDN parsing."""

from __future__ import annotations

from pathlib import Path

import pytest

from mediabroker.errors import ValidationError
from mediabroker.hashing import hash_bytes
from mediabroker.media import (
    Artifact,
    calculate_size_reduction,
    extract_hash_from_cdn_url,
    format_size_mb,
    is_gif_file,
)

pytestmark = pytest.mark.unit


def test_artifact_from_file(tmp_path: Path) -> None:
    p = tmp_path / "Clip.MP4"
    p.write_bytes(b"video-bytes")

    a = Artifact.from_file(p, kind="video", location="https://cdn/videos/x.mp4")

    assert a.content_hash == hash_bytes(b"video-bytes")
    assert a.extension == ".mp4"
    assert a.file_size == 11


@pytest.mark.parametrize(
    ("name", "content_type", "expected"),
    [
        ("a.gif", None, True),
        ("A.GIF", None, True),
        ("blob", "image/gif", True),
        ("blob", "IMAGE/GIF", True),
        ("a.mp4", "video/mp4", False),
        ("a.png", None, False),
    ],
)
def test_is_gif_file(name: str, content_type: str | None, expected: bool) -> None:
    assert is_gif_file(name, content_type) is expected


@pytest.mark.parametrize(
    ("original", "optimized", "expected"),
    [
        (1000, 250, 75),
        (1000, 1000, 0),
        (1000, 1100, -10),
        (0, 10, 0),
        (3, 2, 33),
        (1000, 875, 13),
        (1000, 1125, -12),
    ],
)
def test_calculate_size_reduction(original: int, optimized: int, expected: int) -> None:
    assert calculate_size_reduction(original, optimized) == expected


def test_format_size_mb() -> None:
    assert format_size_mb(7_025_459) == "6.7mb"
    assert format_size_mb(0) == "0.0mb"


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://cdn.bot.example.dev/gifs/abc123.gif", "abc123"),
        ("https://cdn.bot.example.dev/videos/ABC123.webm", "ABC123"),
        ("https://cdn.bot.example.dev/images/ff00.jpeg", "ff00"),
        ("https://cdn.bot.example.dev/gifs/abc123.png", None),
        ("https://evil.test/gifs/abc123.gif", None),
        ("not a url", None),
    ],
)
def test_extract_hash_from_cdn_url(url: str, expected: str | None) -> None:
    assert extract_hash_from_cdn_url(url, domain_suffix=".example.dev") == expected


def test_artifact_rejects_unknown_kind() -> None:
    with pytest.raises(ValidationError) as exc:
        Artifact("abc", "audio", ".mp3", "https://cdn/audio/abc.mp3")  # type: ignore[arg-type]
    assert "audio" in str(exc.value)
