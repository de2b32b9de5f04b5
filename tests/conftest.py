"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and shared test
doubles (a temporary result store and a fake container runtime).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import stat
import sys

import pytest

from mediabroker.config import Settings
from mediabroker.paths import PosixPathTranslator
from mediabroker.store import ResultStore
from mediabroker.transcoder import SandboxedTranscoder

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    monkeypatch.setattr("mediabroker.config.dotenv_values", lambda *_a, **_k: {})


@pytest.fixture(autouse=True)
def isolate_mediabroker_env(monkeypatch):
    """Clear MEDIABROKER_* variables so tests never see the developer's setup."""
    for key in list(os.environ.keys()):
        if key.startswith("MEDIABROKER_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("FAKE_RUNTIME_MODE", raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def mediabroker_debug_logs(caplog):
    """Capture mediabroker logs at DEBUG so tests can assert on diagnostics."""
    caplog.set_level(logging.DEBUG, logger="mediabroker")


# =============================================================================
# Test Doubles
# =============================================================================


@pytest.fixture
def store():
    """An initialized in-memory result store."""
    with ResultStore(":memory:") as s:
        yield s


# Stands in for `docker run ... gifsicle --optimize=N --lossy=N IN -o OUT`.
# Positional layout: $9 is the input path, ${11} the output path.
_FAKE_RUNTIME = """#!/bin/sh
case "$FAKE_RUNTIME_MODE" in
  no-output) exit 0 ;;
  fail) echo "gifsicle: /app/secret/layout.gif: read error" >&2; exit 3 ;;
  hang) exec sleep 30 ;;
  chatty) head -c 200000 /dev/zero; exit 0 ;;
esac
echo "gifsicle: warning: too many colors" >&2
cp "$9" "${11}"
"""


@pytest.fixture
def fake_runtime(tmp_path: Path) -> Path:
    """An executable that copies its input to its output like the optimizer."""
    if sys.platform == "win32":
        pytest.skip("fake runtime is a POSIX shell script")
    script = tmp_path / "bin" / "fake-docker"
    script.parent.mkdir()
    script.write_text(_FAKE_RUNTIME)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


@pytest.fixture
def transcoder(tmp_path: Path, fake_runtime: Path) -> SandboxedTranscoder:
    """Transcoder wired to the fake runtime with an identity path mapping."""
    settings = Settings(
        container_runtime=str(fake_runtime),
        host_root=str(tmp_path),
        timeout_s=5,
    )
    translator = PosixPathTranslator(str(tmp_path), sandbox_root=str(tmp_path))
    return SandboxedTranscoder(settings, translator=translator)
