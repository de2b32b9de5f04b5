"""Concurrency broker: dedupe, queue and bound expensive media work.

Each request is identified by a cache key (see :mod:`mediabroker.keys`).
The broker:

- short-circuits on a persistent cache hit (unless the cached kind differs
  from the one the caller expects),
- joins callers onto an identical in-flight request,
- admits new work FIFO under a fixed ceiling of concurrently running
  producers.

All coordination state is mutated only from the event loop thread, between
awaits, so no lock is needed around it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, TypeVar

from mediabroker.errors import ConfigurationError, StorageError
from mediabroker.keys import compute_parameterized_key, compute_url_key
from mediabroker.media import Artifact
from mediabroker.result import Executed, Resolved

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from mediabroker.media import ArtifactKind
    from mediabroker.store import CachedResult, ResultStore

log = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 2


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    try:
        _ = fut.exception()
    except asyncio.CancelledError:
        return


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Point-in-time broker counters, for observability only."""

    active_requests: int
    queued_requests: int
    in_progress_urls: int
    max_concurrent: int


@dataclass(slots=True)
class _QueuedRequest:
    key: str
    producer: Callable[[], Awaitable[Any]]
    future: asyncio.Future[Any]
    requester: str | None


class ConcurrencyBroker:
    """Single-flight, FIFO-bounded executor for keyed media requests.

    Construct one per process (or per test) and share it; each instance owns
    its own in-flight map and queue.

    Example:
        broker = ConcurrencyBroker(store, max_concurrent=2)
        outcome = await broker.resolve(url, download, options={"fps": 15})
        match outcome:
            case Resolved(location=loc):
                ...
            case Executed(value=artifact):
                ...
    """

    def __init__(
        self,
        store: ResultStore | None = None,
        *,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> None:
        if max_concurrent < 1:
            raise ConfigurationError(
                f"max_concurrent must be ≥ 1, got {max_concurrent}",
                hint="This bounds how many producers run at once.",
            )
        self._store = store
        self._max_concurrent = max_concurrent
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._queue: deque[_QueuedRequest] = deque()
        self._active = 0
        self._running: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> ResultStore | None:
        return self._store

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def key_for(self, url: str, options: Mapping[str, Any] | None = None) -> str:
        """Return the cache key :meth:`resolve` would use."""
        if options is None:
            return compute_url_key(url)
        return compute_parameterized_key(url, options)

    async def resolve(
        self,
        url: str,
        producer: Callable[[], Awaitable[T]],
        *,
        options: Mapping[str, Any] | None = None,
        skip_cache: bool = False,
        expected_kind: ArtifactKind | None = None,
        requester: str | None = None,
    ) -> Resolved | Executed[T]:
        """Resolve *url* via the cache, an identical in-flight run, or *producer*.

        Args:
            url: Source URL.
            producer: Zero-argument coroutine function doing the real work.
                Returning an :class:`~mediabroker.media.Artifact` records it in
                the persistent cache under this request's key.
            options: Output-affecting parameters; ``None`` keys on the URL only.
            skip_cache: Do not consult the persistent cache.
            expected_kind: Ignore a cached record of any other kind.
            requester: Stored alongside a recorded artifact.

        Returns:
            ``Resolved`` on a cache hit, else ``Executed`` with the producer's
            value. Producer exceptions propagate unchanged to every joined
            caller.
        """
        key = self.key_for(url, options)

        if not skip_cache and self._store is not None:
            cached = await self._lookup(self._store, key, expected_kind)
            if cached is not None:
                log.info(
                    "URL already processed (key: %s...), returning existing location: %s",
                    key[:8],
                    cached.location,
                )
                return Resolved(location=cached.location, record=cached)

        fut = self._inflight.get(key)
        if fut is not None:
            log.info("URL already in progress, joining existing request: %.50s", url)
            return Executed(await asyncio.shield(fut))

        fut = self._submit(key, producer, requester)
        return Executed(await asyncio.shield(fut))

    def get_queue_stats(self) -> QueueStats:
        return QueueStats(
            active_requests=self._active,
            queued_requests=len(self._queue),
            in_progress_urls=len(self._inflight),
            max_concurrent=self._max_concurrent,
        )

    async def drain(self) -> None:
        """Wait until no producer is running or queued."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lookup(
        self, store: ResultStore, key: str, expected_kind: ArtifactKind | None
    ) -> CachedResult | None:
        cached = await asyncio.to_thread(store.lookup, key)
        if cached is None:
            return None
        if expected_kind is not None and cached.kind != expected_kind:
            log.debug(
                "Cached kind %s for key %s... does not match expected %s; bypassing cache",
                cached.kind,
                key[:8],
                expected_kind,
            )
            return None
        return cached

    def _submit(
        self,
        key: str,
        producer: Callable[[], Awaitable[Any]],
        requester: str | None,
    ) -> asyncio.Future[Any]:
        # No await between this check and publication: a caller that raced us
        # through the cache lookup converges on the same future.
        existing = self._inflight.get(key)
        if existing is not None:
            return existing

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(consume_future_exception)
        self._inflight[key] = fut
        self._queue.append(_QueuedRequest(key, producer, fut, requester))
        log.info(
            "Request queued (active: %d/%d, queued: %d)",
            self._active,
            self._max_concurrent,
            len(self._queue),
        )
        self._pump()
        return fut

    def _pump(self) -> None:
        while self._active < self._max_concurrent and self._queue:
            request = self._queue.popleft()
            self._active += 1
            task = asyncio.get_running_loop().create_task(self._execute(request))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _execute(self, request: _QueuedRequest) -> None:
        log.info(
            "Executing request (active: %d/%d, queued: %d)",
            self._active,
            self._max_concurrent,
            len(self._queue),
        )
        value: Any = None
        error: BaseException | None = None
        try:
            value = await request.producer()
            if isinstance(value, Artifact):
                await self._record(request, value)
        except asyncio.CancelledError as e:
            error = e
        except Exception as e:  # noqa: BLE001 - handed to every waiter
            error = e
        finally:
            self._active -= 1
            if self._inflight.get(request.key) is request.future:
                del self._inflight[request.key]
            log.info(
                "Request completed (active: %d/%d, queued: %d)",
                self._active,
                self._max_concurrent,
                len(self._queue),
            )

        fut = request.future
        if isinstance(error, asyncio.CancelledError):
            fut.cancel()
        elif error is not None:
            fut.set_exception(error)
        else:
            fut.set_result(value)
        self._pump()
        if isinstance(error, asyncio.CancelledError):
            raise error

    async def _record(self, request: _QueuedRequest, artifact: Artifact) -> None:
        if self._store is None:
            return
        try:
            await asyncio.to_thread(
                self._store.upsert,
                request.key,
                artifact.content_hash,
                artifact.kind,
                artifact.extension,
                artifact.location,
                None,
                request.requester,
                artifact.file_size,
            )
        except StorageError:
            # Callers still get the artifact; the next request simply misses.
            log.exception("Could not record result for key %s...", request.key[:8])
