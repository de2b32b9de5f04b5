"""Persistent result cache backed by SQLite.

One row per cache key. Writes are upserts (update, else insert) so that an
out-of-band writer racing on the same key never produces a duplicate-key
failure or a second row.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import sqlite3
import threading
import time
from typing import TYPE_CHECKING, Any

from mediabroker.errors import StorageError, ValidationError
from mediabroker.media import ARTIFACT_KINDS, ArtifactKind

if TYPE_CHECKING:
    from types import TracebackType

log = logging.getLogger(__name__)

TABLE = "processed_urls"

# Non-key columns written by upsert, in statement order.
_VALUE_COLUMNS: tuple[str, ...] = (
    "content_hash",
    "kind",
    "extension",
    "location",
    "created_at",
    "requester",
    "file_size",
)
_ALL_COLUMNS: tuple[str, ...] = ("key", *_VALUE_COLUMNS)

_DDL: tuple[str, ...] = (
    f"CREATE TABLE IF NOT EXISTS {TABLE} ("
    "key TEXT PRIMARY KEY NOT NULL, "
    "content_hash TEXT NOT NULL, "
    "kind TEXT NOT NULL, "
    "extension TEXT NOT NULL, "
    "location TEXT NOT NULL, "
    "created_at INTEGER NOT NULL, "
    "requester TEXT, "
    "file_size INTEGER)",
    f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_requester ON {TABLE} (requester, created_at)",
)

_SELECT = f"SELECT {', '.join(_ALL_COLUMNS)} FROM {TABLE}"  # noqa: S608
_UPDATE = (
    f"UPDATE {TABLE} SET {', '.join(f'{c} = ?' for c in _VALUE_COLUMNS)} "  # noqa: S608
    "WHERE key = ?"
)
_INSERT = (
    f"INSERT INTO {TABLE} ({', '.join(_ALL_COLUMNS)}) "  # noqa: S608
    f"VALUES ({', '.join('?' for _ in _ALL_COLUMNS)})"
)


@dataclass(frozen=True, slots=True)
class CachedResult:
    """Durable record of a resolved key."""

    key: str
    content_hash: str
    kind: ArtifactKind
    extension: str
    location: str
    created_at: int
    requester: str | None = None
    file_size: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> CachedResult:
        return cls(**{c: row[c] for c in _ALL_COLUMNS})


def now_ms() -> int:
    """Current wall time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class ResultStore:
    """SQLite-backed key -> artifact mapping.

    The connection is shared across threads behind a lock so the broker can
    run lookups off the event loop.

    Usage::

        with ResultStore(Path("data/cache.db")) as store:
            store.upsert(key, "abc", "gif", ".gif", "https://cdn/x.gif")
            store.lookup(key)
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Open the connection and create the table if needed. Idempotent."""
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if self._db_path != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            with conn:
                for stmt in _DDL:
                    conn.execute(stmt)
        except sqlite3.Error as e:
            raise StorageError(
                f"Could not open result cache: {e}",
                hint="Check that the database directory is writable.",
            ) from e
        self._conn = conn

    def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> ResultStore:
        self.initialize()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, key: str) -> CachedResult | None:
        """Fetch the record for *key*, or ``None``."""
        rows = self._query(f"{_SELECT} WHERE key = ?", (key,))
        return CachedResult.from_row(rows[0]) if rows else None

    def list_for_requester(
        self,
        requester: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        kind: ArtifactKind | None = None,
    ) -> list[CachedResult]:
        """Records created for *requester*, newest first."""
        sql = f"{_SELECT} WHERE requester = ?"
        params: list[Any] = [requester]
        if kind is not None:
            sql += " AND kind = ?"
            params.append(kind)
        sql += " ORDER BY created_at DESC"
        if limit is not None or offset is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend((-1 if limit is None else limit, offset or 0))
        return [CachedResult.from_row(r) for r in self._query(sql, tuple(params))]

    def count_for_requester(self, requester: str, *, kind: ArtifactKind | None = None) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {TABLE} WHERE requester = ?"  # noqa: S608
        params: tuple[Any, ...] = (requester,)
        if kind is not None:
            sql += " AND kind = ?"
            params = (requester, kind)
        return int(self._query(sql, params)[0]["n"])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(
        self,
        key: str,
        content_hash: str,
        kind: ArtifactKind,
        extension: str,
        location: str,
        created_at: int | None = None,
        requester: str | None = None,
        file_size: int | None = None,
    ) -> CachedResult:
        """Insert the record for *key*, or overwrite its non-key columns."""
        if kind not in ARTIFACT_KINDS:
            raise ValidationError(
                f"Unknown artifact kind: {kind!r}",
                hint=f"Expected one of {sorted(ARTIFACT_KINDS)}",
            )
        record = CachedResult(
            key=key,
            content_hash=content_hash,
            kind=kind,
            extension=extension,
            location=location,
            created_at=now_ms() if created_at is None else created_at,
            requester=requester,
            file_size=file_size,
        )
        values = tuple(getattr(record, c) for c in _VALUE_COLUMNS)
        conn = self._require_conn()
        with self._lock:
            try:
                with conn:
                    cur = conn.execute(_UPDATE, (*values, key))
                    if cur.rowcount == 0:
                        try:
                            conn.execute(_INSERT, (key, *values))
                        except sqlite3.IntegrityError:
                            # Another writer inserted between our UPDATE and INSERT.
                            conn.execute(_UPDATE, (*values, key))
            except sqlite3.Error as e:
                raise StorageError(f"Failed to record result for key {key[:8]}: {e}") from e
        log.debug("Recorded %s result for key %s -> %s", kind, key[:8], location)
        return record

    def delete(self, key: str) -> bool:
        """Remove the record for *key*. Returns True if a row was deleted."""
        conn = self._require_conn()
        with self._lock:
            try:
                with conn:
                    cur = conn.execute(f"DELETE FROM {TABLE} WHERE key = ?", (key,))  # noqa: S608
            except sqlite3.Error as e:
                raise StorageError(f"Failed to delete key {key[:8]}: {e}") from e
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(
                "Result cache is not initialized",
                hint="Call ResultStore.initialize() or use it as a context manager.",
            )
        return self._conn

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        conn = self._require_conn()
        with self._lock:
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StorageError(f"Result cache query failed: {e}") from e
