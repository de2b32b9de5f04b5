"""mediabroker: deduplicated, bounded, cached media conversion requests.

Public API:
    - ConcurrencyBroker: single-flight + FIFO admission over a result cache
    - ResultStore: SQLite-backed persistent result cache
    - SandboxedTranscoder / TranscodeJob: containerized GIF optimization
    - compute_url_key / compute_parameterized_key: cache key derivation
    - Settings / load_settings: configuration
"""

from __future__ import annotations

import logging

from mediabroker.broker import ConcurrencyBroker, QueueStats
from mediabroker.config import Settings, load_settings
from mediabroker.errors import (
    ConfigurationError,
    ExternalToolError,
    MediaBrokerError,
    StorageError,
    ToolNotInstalledError,
    ToolTimeoutError,
    ValidationError,
)
from mediabroker.keys import compute_parameterized_key, compute_url_key
from mediabroker.media import Artifact, ArtifactKind
from mediabroker.paths import (
    PathTranslator,
    PosixPathTranslator,
    WindowsPathTranslator,
    translator_for_host,
)
from mediabroker.result import Executed, Outcome, Resolved
from mediabroker.store import CachedResult, ResultStore
from mediabroker.transcoder import (
    SandboxedTranscoder,
    TranscodeJob,
    TranscodeReport,
    optimize_gif,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("mediabroker")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("mediabroker").addHandler(logging.NullHandler())


def create_broker(settings: Settings | None = None) -> ConcurrencyBroker:
    """Build a broker over an initialized store from *settings*.

    The caller owns the store's lifetime; it is reachable as
    ``broker.store``.
    """
    cfg = settings or load_settings()
    store = ResultStore(cfg.database_path)
    store.initialize()
    return ConcurrencyBroker(store, max_concurrent=cfg.max_concurrent)


__all__ = [
    "Artifact",
    "ArtifactKind",
    "CachedResult",
    "ConcurrencyBroker",
    "ConfigurationError",
    "Executed",
    "ExternalToolError",
    "MediaBrokerError",
    "Outcome",
    "PathTranslator",
    "PosixPathTranslator",
    "QueueStats",
    "Resolved",
    "ResultStore",
    "SandboxedTranscoder",
    "Settings",
    "StorageError",
    "ToolNotInstalledError",
    "ToolTimeoutError",
    "TranscodeJob",
    "TranscodeReport",
    "ValidationError",
    "WindowsPathTranslator",
    "compute_parameterized_key",
    "compute_url_key",
    "create_broker",
    "load_settings",
    "optimize_gif",
    "translator_for_host",
]
