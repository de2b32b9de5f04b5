"""Host to sandbox path translation and path safety checks.

The transcoder container mounts the host working directory at a fixed
prefix (``/app`` by default). A translator maps host-absolute paths onto
that prefix; paths outside the host root pass through normalized but
otherwise untouched.
"""

from __future__ import annotations

import os
import posixpath
from typing import Protocol, runtime_checkable

from mediabroker.errors import ValidationError

SHELL_METACHARACTERS: frozenset[str] = frozenset(";&|`$(){}[]*?~<>\\\n\r\t\0")

_CONTROL_NAMES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\0": "\\0"}


@runtime_checkable
class PathTranslator(Protocol):
    """Maps a host path into the sandbox's namespace."""

    def to_sandbox(self, host_path: str) -> str: ...  # noqa: D102


def _swap_prefix(path: str, root: str, sandbox_root: str) -> str | None:
    root = root.rstrip("/") or "/"
    if path == root:
        return sandbox_root
    prefix = root if root.endswith("/") else root + "/"
    if path.startswith(prefix):
        return posixpath.join(sandbox_root, path[len(prefix) :])
    return None


class PosixPathTranslator:
    """Translator for hosts that already use ``/`` separators.

    The root is matched both as given and with symlinks resolved, since job
    paths usually arrive resolved.
    """

    def __init__(self, host_root: str, sandbox_root: str = "/app") -> None:
        self.host_root = posixpath.normpath(host_root)
        self.resolved_root = os.path.realpath(self.host_root)
        self.sandbox_root = sandbox_root

    def to_sandbox(self, host_path: str) -> str:
        path = posixpath.normpath(host_path)
        for root in (self.resolved_root, self.host_root):
            swapped = _swap_prefix(path, root, self.sandbox_root)
            if swapped is not None:
                return swapped
        return path


class WindowsPathTranslator:
    """Translator for hosts with ``\\`` separators and drive letters.

    Separators are normalized to ``/`` before matching. When the host root
    carries a drive prefix, a path without one is matched against the root
    with its drive stripped.
    """

    def __init__(self, host_root: str, sandbox_root: str = "/app") -> None:
        self.host_root = _to_forward(host_root)
        self.sandbox_root = sandbox_root

    def to_sandbox(self, host_path: str) -> str:
        path = _to_forward(host_path)
        swapped = self._match(path, self.host_root)
        if swapped is not None:
            return swapped
        root_drive, root_rest = _split_drive(self.host_root)
        path_drive, path_rest = _split_drive(path)
        if root_drive:
            swapped = self._match(path_rest, root_rest)
            if swapped is not None and (not path_drive or path_drive.lower() == root_drive.lower()):
                return swapped
        return path

    def _match(self, path: str, root: str) -> str | None:
        # NTFS is case-insensitive; compare folded, keep the original tail.
        swapped = _swap_prefix(path.lower(), root.lower(), self.sandbox_root)
        if swapped is None:
            return None
        tail = path[len(root.rstrip("/")) :].lstrip("/")
        return posixpath.join(self.sandbox_root, tail) if tail else self.sandbox_root


def _to_forward(path: str) -> str:
    return posixpath.normpath(path.replace("\\", "/"))


def _split_drive(path: str) -> tuple[str, str]:
    if len(path) >= 2 and path[1] == ":" and path[0].isalpha():
        return path[:2], path[2:] or "/"
    return "", path


def translator_for_host(
    host_root: str | None = None, sandbox_root: str = "/app"
) -> PathTranslator:
    """Pick the translator matching the running host's path convention."""
    root = host_root or os.getcwd()
    if os.name == "nt":
        return WindowsPathTranslator(root, sandbox_root)
    return PosixPathTranslator(root, sandbox_root)


def find_shell_metacharacter(path: str) -> str | None:
    """Return the first shell metacharacter in *path*, if any."""
    for ch in path:
        if ch in SHELL_METACHARACTERS:
            return ch
    return None


def ensure_safe_path(path: str, *, label: str) -> str:
    """Return *path* unchanged, or raise if it carries a shell metacharacter."""
    ch = find_shell_metacharacter(path)
    if ch is not None:
        shown = _CONTROL_NAMES.get(ch, ch)
        raise ValidationError(
            f"Invalid character {shown!r} in {label} path: {path!r}",
            hint="Rename the file so its path avoids shell metacharacters.",
        )
    return path
