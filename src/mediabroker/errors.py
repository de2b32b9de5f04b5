"""Exception hierarchy for mediabroker."""

from __future__ import annotations


class MediaBrokerError(Exception):
    """Base exception for all mediabroker errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(MediaBrokerError):
    """Configuration validation or resolution failed."""


class ValidationError(MediaBrokerError):
    """Input rejected before any external work started.

    Also raised when an external step reported success without producing
    its declared output.
    """


class StorageError(MediaBrokerError):
    """The persistent result cache could not be read or written."""


class ExternalToolError(MediaBrokerError):
    """An external process failed.

    Messages are sanitized for callers; full diagnostics (including captured
    stderr) are logged instead of being attached here.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        tool: str | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool = tool
        self.returncode = returncode


class ToolNotInstalledError(ExternalToolError):
    """The external executable could not be found."""


class ToolTimeoutError(ExternalToolError):
    """The external process exceeded its wall-clock budget or was terminated."""
