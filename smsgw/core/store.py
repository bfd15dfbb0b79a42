"""Keyed query cache shared by the registry and channel editor.

Each key owns a fetcher coroutine, the last applied value and at most one
"current" in-flight fetch. Refresh requests coalesce onto the current fetch;
``invalidate`` always starts a new one, so a poll and a mutation refetch may
overlap. By default whichever response arrives last is applied.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
Subscriber = Callable[[Any], None]


@dataclass
class _Entry:
    fetcher: Fetcher
    value: Any = None
    loaded: bool = False
    stale: bool = True
    inflight: asyncio.Task[Any] | None = None
    issued: int = 0
    applied: int = 0
    subscribers: list[Subscriber] = field(default_factory=list)


class QueryStore:
    """Injectable cache with coalescing, invalidation and subscribers.

    Args:
        discard_stale: Drop a response when a newer-issued fetch for the same
            key has already been applied. Off by default, in which case the
            last response to arrive wins.
    """

    def __init__(self, *, discard_stale: bool = False) -> None:
        self.discard_stale = discard_stale
        self._entries: dict[str, _Entry] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._awaited: set[asyncio.Task[Any]] = set()

    def register(self, key: str, fetcher: Fetcher) -> None:
        if key in self._entries:
            self._entries[key].fetcher = fetcher
            return
        self._entries[key] = _Entry(fetcher=fetcher)

    def get(self, key: str) -> Any:
        return self._entries[key].value

    def is_loaded(self, key: str) -> bool:
        return self._entries[key].loaded

    def is_stale(self, key: str) -> bool:
        return self._entries[key].stale

    def is_fetching(self, key: str) -> bool:
        task = self._entries[key].inflight
        return task is not None and not task.done()

    async def fetch(self, key: str) -> Any:
        """Return fresh data for *key*, joining a fetch already in flight."""
        entry = self._entries[key]
        task = entry.inflight
        if task is None or task.done():
            task = self._start(key, entry)
        self._awaited.add(task)
        # Callers going away must not cancel the shared fetch.
        return await asyncio.shield(task)

    def invalidate(self, key: str) -> asyncio.Task[Any] | None:
        """Mark *key* stale and refetch immediately if anything uses it.

        Returns the refetch task, or None when the key was never loaded and
        has no subscribers.
        """
        entry = self._entries[key]
        entry.stale = True
        if not entry.loaded and not entry.subscribers:
            return None
        return self._start(key, entry)

    def subscribe(self, key: str, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* with each applied value; returns an unsubscribe function."""
        entry = self._entries[key]
        entry.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in entry.subscribers:
                entry.subscribers.remove(callback)

        return unsubscribe

    async def drain(self) -> None:
        """Wait for every fetch started so far (background ones included)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _start(self, key: str, entry: _Entry) -> asyncio.Task[Any]:
        entry.issued += 1
        task = asyncio.get_running_loop().create_task(self._run(key, entry, entry.issued))
        entry.inflight = task
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    async def _run(self, key: str, entry: _Entry, generation: int) -> Any:
        value = await entry.fetcher()
        if self.discard_stale and generation < entry.applied:
            LOGGER.debug("Discarding %s response generation %d (applied %d)", key, generation, entry.applied)
            return entry.value

        entry.value = value
        entry.applied = generation
        entry.loaded = True
        if generation == entry.issued:
            entry.stale = False
        for callback in list(entry.subscribers):
            callback(value)
        return value

    def _finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        awaited = task in self._awaited
        self._awaited.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        # A caller awaiting the fetch receives the error itself.
        if awaited:
            LOGGER.debug("Fetch failed: %s", exc)
        else:
            LOGGER.warning("Background fetch failed: %s", exc)
