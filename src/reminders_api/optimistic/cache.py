from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Hashable, Iterable, Optional, Sequence, Tuple

from ..schemas import ReminderOut

logger = logging.getLogger(__name__)

Snapshot = Tuple[ReminderOut, ...]
Fetcher = Callable[[], Awaitable[Sequence[ReminderOut]]]

# Cache key of the reminder list shown in the current view
REMINDERS_KEY: Hashable = ("reminders",)


def freeze_snapshot(items: Iterable[ReminderOut]) -> Snapshot:
    """Materialize items as an immutable snapshot, rejecting duplicate reminder ids."""
    snapshot = tuple(items)
    ids = [r.id for r in snapshot]
    if len(set(ids)) != len(ids):
        raise ValueError("snapshot contains duplicate reminder ids")
    return snapshot


@dataclass
class _Entry:
    snapshot: Optional[Snapshot] = None
    stale: bool = True
    version: int = 0
    fetcher: Optional[Fetcher] = None
    refresh: Optional["asyncio.Task[Snapshot]"] = None


# PUBLIC_INTERFACE
class ReminderCache:
    """
    Shared in-memory store of reminder snapshots, addressed by key.

    Every write replaces the whole snapshot, so readers never observe a
    partially applied change. Refreshes run as asyncio tasks through the
    fetcher registered for a key; at most one refresh per key is in flight.
    """

    def __init__(self) -> None:
        self._entries: Dict[Hashable, _Entry] = {}

    def _entry(self, key: Hashable) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        return entry

    def register_fetcher(self, key: Hashable, fetcher: Fetcher) -> None:
        """Set the coroutine function used to load authoritative data for key."""
        self._entry(key).fetcher = fetcher

    def read(self, key: Hashable) -> Optional[Snapshot]:
        entry = self._entries.get(key)
        return None if entry is None else entry.snapshot

    def write(self, key: Hashable, snapshot: Iterable[ReminderOut]) -> None:
        """Replace the snapshot stored under key. The entry becomes fresh."""
        entry = self._entry(key)
        entry.snapshot = freeze_snapshot(snapshot)
        entry.stale = False
        entry.version += 1

    def version(self, key: Hashable) -> int:
        """Number of writes applied to key so far, refreshes included."""
        entry = self._entries.get(key)
        return 0 if entry is None else entry.version

    def is_stale(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.stale

    def is_fetching(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.refresh is not None and not entry.refresh.done()

    async def fetch(self, key: Hashable) -> Snapshot:
        """
        Return fresh data for key, loading it when the entry is empty or stale.

        Concurrent callers share one refresh. If that refresh is cancelled to
        make room for a local write, the cached snapshot is returned rather
        than starting another refresh that could overwrite the write.
        """
        while True:
            entry = self._entry(key)
            if entry.snapshot is not None and not entry.stale:
                return entry.snapshot
            task = entry.refresh if entry.refresh is not None and not entry.refresh.done() else self._start_refresh(key)
            await asyncio.wait([task])
            if not task.cancelled():
                return task.result()
            if entry.snapshot is not None:
                return entry.snapshot

    async def cancel_in_flight(self, key: Hashable) -> None:
        """Cancel a running refresh of key and wait until it has stopped. A cancelled refresh never writes."""
        entry = self._entries.get(key)
        if entry is None or entry.refresh is None or entry.refresh.done():
            return
        task = entry.refresh
        task.cancel()
        await asyncio.wait([task])
        logger.debug("Cancelled in-flight refresh of %r", key)

    def invalidate(self, key: Hashable) -> None:
        """
        Mark key stale and schedule a refetch.

        A refresh already running was started before this call and may carry
        stale data, so it is cancelled and a new one is started. Without a
        registered fetcher the entry is only marked stale and the next
        ``fetch`` reloads it.
        """
        entry = self._entry(key)
        entry.stale = True
        if entry.fetcher is None:
            return
        if entry.refresh is not None and not entry.refresh.done():
            entry.refresh.cancel()
        self._start_refresh(key)
        logger.debug("Invalidated %r; refetch scheduled", key)

    async def wait_idle(self, key: Hashable) -> None:
        """Wait until no refresh of key is running."""
        while True:
            entry = self._entries.get(key)
            if entry is None or entry.refresh is None or entry.refresh.done():
                return
            await asyncio.wait([entry.refresh])

    async def close(self) -> None:
        """Cancel every running refresh."""
        tasks = [e.refresh for e in self._entries.values() if e.refresh is not None and not e.refresh.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)

    def _start_refresh(self, key: Hashable) -> "asyncio.Task[Snapshot]":
        entry = self._entry(key)
        if entry.fetcher is None:
            raise LookupError(f"no fetcher registered for cache key {key!r}")
        task = asyncio.get_running_loop().create_task(self._run_refresh(entry, entry.fetcher))
        task.add_done_callback(lambda t: self._report_refresh(key, t))
        entry.refresh = task
        return task

    async def _run_refresh(self, entry: _Entry, fetcher: Fetcher) -> Snapshot:
        try:
            snapshot = freeze_snapshot(await fetcher())
            entry.snapshot = snapshot
            entry.stale = False
            entry.version += 1
            return snapshot
        finally:
            if entry.refresh is asyncio.current_task():
                entry.refresh = None

    @staticmethod
    def _report_refresh(key: Hashable, task: "asyncio.Task[Snapshot]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Refresh of %r failed: %s", key, exc)
