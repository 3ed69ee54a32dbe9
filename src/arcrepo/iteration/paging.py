"""
arcrepo.iteration.paging - Paging Iterator
============================================

Turns a paged list endpoint into one lazy, forward-only, finite async
sequence. A background producer task fetches pages ahead of the consumer
into a small bounded queue:

    ┌──────────────┐  fetch(limit, token)  ┌──────────┐
    │ _PageProducer│ ────────────────────> │  server  │
    │  (task)      │ <──────────────────── │          │
    └──────┬───────┘   Page(items, token)  └──────────┘
           │ put (waits as long as needed)
           v
    ┌──────────────┐
    │ asyncio.Queue│  maxsize = queue_len pages
    └──────┬───────┘
           │ get (waits at most queue_get_timeout)
           v
    ┌──────────────┐
    │PagingIterator│ ──> async for item in iterator
    └──────────────┘

Termination:
    - A page without a continuation token, or an empty page, is the last
      one; the producer then enqueues an end sentinel.
    - A fetch error is enqueued as a failure sentinel and raised from the
      consumer's next ``__anext__``. Later calls raise IteratorStateError.
    - ``aclose()`` (or leaving ``async with``) stops the producer. If the
      iterator is dropped without being closed, a ``weakref.finalize``
      callback stops it once the iterator is garbage collected. Correct
      programs close explicitly; the finalizer is only a backstop.

The producer holds no reference to its iterator, so an abandoned iterator
can actually be collected while the producer is waiting on the queue.
"""

from __future__ import annotations

import asyncio
import collections
import time
import weakref
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Generic, Optional, TypeVar

import structlog
from pydantic import BaseModel

from arcrepo.core.enums import IteratorState
from arcrepo.core.exceptions import IteratorStateError, IteratorTimeoutError


logger = structlog.get_logger()

T = TypeVar("T")


class Page(BaseModel):
    """One fetched page: its items and the token for the next page.

    A None ``continuation_token`` marks the last page.
    """

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    items: Sequence[Any]
    continuation_token: Optional[str] = None


# fetch(limit, continuation_token) -> Page
PageFetcher = Callable[[Optional[int], Optional[str]], Awaitable[Page]]


class _EndOfPages:
    """Sentinel enqueued after the last page."""


class _FetchFailure:
    """Sentinel carrying a producer-side exception to the consumer."""

    def __init__(self, error: BaseException) -> None:
        self.error = error


_END = _EndOfPages()


class PageSizeSchedule:
    """Yields page sizes from a list; the last size repeats forever.

    >>> schedule = PageSizeSchedule([10, 100, 1000])
    >>> [schedule.next() for _ in range(5)]
    [10, 100, 1000, 1000, 1000]
    """

    def __init__(self, sizes: Optional[Sequence[int]] = None) -> None:
        self._sizes = collections.deque(sizes or ())

    def next(self) -> Optional[int]:
        if not self._sizes:
            return None
        if len(self._sizes) > 1:
            return self._sizes.popleft()
        return self._sizes[0]


# =============================================================================
# Producer
# =============================================================================
class _PageProducer:
    """Fetches pages into a queue until the last page, an error, or stop()."""

    def __init__(
        self,
        fetch: PageFetcher,
        queue: asyncio.Queue,
        page_sizes: Optional[Sequence[int]],
        log: Any,
    ) -> None:
        self._fetch = fetch
        self._queue = queue
        self._schedule = PageSizeSchedule(page_sizes)
        self._logger = log
        self._stopped = False
        self._task: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.finished = False
        self.pages_fetched = 0
        self.fetch_wait = 0.0
        self.put_wait = 0.0

    def start(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self.run(), name="arcrepo-page-producer")

    @property
    def task(self) -> Optional[asyncio.Task[None]]:
        return self._task

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Set the stop flag and interrupt any in-progress wait."""
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    def stop_threadsafe(self) -> None:
        """stop() callable from a finalizer, which may run on any thread."""
        self._stopped = True
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.stop)
        except RuntimeError:
            # Loop closed between the check and the call.
            pass

    async def run(self) -> None:
        token: Optional[str] = None
        try:
            while not self._stopped:
                limit = self._schedule.next()

                started = time.monotonic()
                page = await self._fetch(limit, token)
                self.fetch_wait += time.monotonic() - started
                self.pages_fetched += 1

                if self._stopped:
                    return
                self._logger.debug(
                    "page_fetched",
                    page=self.pages_fetched,
                    items=len(page.items),
                    limit=limit,
                    has_more=page.continuation_token is not None,
                )

                if page.items:
                    await self._put(page.items)
                token = page.continuation_token
                if not page.items or not token:
                    break

            if not self._stopped:
                await self._put(_END)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._stopped:
                self._logger.debug("page_fetch_failed", error=str(exc), error_type=type(exc).__name__)
                await self._put(_FetchFailure(exc))
        finally:
            self.finished = True

    async def _put(self, entry: Any) -> None:
        started = time.monotonic()
        await self._queue.put(entry)
        self.put_wait += time.monotonic() - started


def _reclaim(producer: _PageProducer) -> None:
    """Finalizer for an iterator collected while still open."""
    if not producer.finished and not producer.stopped:
        logger.debug("paging_iterator_reclaimed", pages_fetched=producer.pages_fetched)
    producer.stop_threadsafe()


# =============================================================================
# Consumer
# =============================================================================
class PagingIterator(Generic[T]):
    """Lazy, finite, non-restartable async sequence over a paged endpoint.

    The producer starts on construction, so an iterator must be created
    while an event loop is running.

    Args:
        fetch: Coroutine ``fetch(limit, continuation_token) -> Page``.
        page_sizes: Page-size schedule; the last size repeats. None lets the
            server choose.
        queue_len: Maximum number of pages fetched ahead of the consumer.
        queue_get_timeout: Seconds the consumer waits for the next page
            before raising IteratorTimeoutError.
        description: Label for log lines (e.g. the endpoint).

    Example:
        >>> async with client.get_artifacts("ns1", "auid1") as artifacts:
        ...     async for artifact in artifacts:
        ...         print(artifact.uri)
    """

    def __init__(
        self,
        fetch: PageFetcher,
        *,
        page_sizes: Optional[Sequence[int]] = None,
        queue_len: int = 3,
        queue_get_timeout: float = 60.0,
        description: str = "",
    ) -> None:
        self._queue_get_timeout = queue_get_timeout
        self._logger = logger.bind(component="paging_iterator", source=description)

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_len)
        self._items: collections.deque[T] = collections.deque()
        self._state = IteratorState.FETCHING
        self._failure: Optional[BaseException] = None
        self._yielded = 0
        self._iter_wait = 0.0

        self._producer = _PageProducer(fetch, self._queue, page_sizes, self._logger)
        self._producer.start()
        self._finalizer = weakref.finalize(self, _reclaim, self._producer)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> IteratorState:
        if self._state == IteratorState.FETCHING and self._producer.finished:
            return IteratorState.DRAINING
        return self._state

    @property
    def yielded(self) -> int:
        """Number of items handed out so far."""
        return self._yielded

    # =========================================================================
    # Async Iteration
    # =========================================================================

    def __aiter__(self) -> PagingIterator[T]:
        return self

    async def __anext__(self) -> T:
        if self._failure is not None:
            raise IteratorStateError(
                message="Iterator has already failed",
                error_code="ITERATOR_FAILED",
                details={"error": str(self._failure)},
            ) from self._failure

        while not self._items:
            if self._state in (IteratorState.DONE, IteratorState.TERMINATED):
                raise StopAsyncIteration
            entry = await self._next_entry()
            if entry is _END:
                self._finish(IteratorState.DONE)
                raise StopAsyncIteration
            if isinstance(entry, _FetchFailure):
                self._fail(entry.error)
                raise entry.error
            self._items.extend(entry)

        item = self._items.popleft()
        self._yielded += 1
        return item

    async def _next_entry(self) -> Any:
        started = time.monotonic()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=self._queue_get_timeout)
        except asyncio.TimeoutError:
            error = IteratorTimeoutError(
                message=(
                    f"No page arrived within {self._queue_get_timeout}s; "
                    "the producer is stuck or dead"
                ),
                timeout_seconds=self._queue_get_timeout,
            )
            self._fail(error)
            raise error from None
        finally:
            self._iter_wait += time.monotonic() - started

    async def to_list(self) -> list[T]:
        """Drain the remaining items into a list and close the iterator."""
        try:
            return [item async for item in self]
        finally:
            await self.aclose()

    # =========================================================================
    # Closing
    # =========================================================================

    def close(self) -> None:
        """Stop the producer without waiting for it to exit."""
        if self._state not in (IteratorState.DONE, IteratorState.TERMINATED):
            self._state = IteratorState.TERMINATED
            self._log_stats()
        self._producer.stop()
        self._items.clear()
        self._finalizer.detach()

    async def aclose(self) -> None:
        """Stop the producer and wait for it to exit."""
        self.close()
        task = self._producer.task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> PagingIterator[T]:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _finish(self, state: IteratorState) -> None:
        self._state = state
        self._log_stats()
        self._producer.stop()
        self._finalizer.detach()

    def _fail(self, error: BaseException) -> None:
        self._failure = error
        self._finish(IteratorState.DONE)

    def _log_stats(self) -> None:
        self._logger.debug(
            "paging_iterator_finished",
            state=self._state.value,
            items=self._yielded,
            pages=self._producer.pages_fetched,
            iter_wait=round(self._iter_wait, 3),
            fetch_wait=round(self._producer.fetch_wait, 3),
            put_wait=round(self._producer.put_wait, 3),
        )
