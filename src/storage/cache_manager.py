# src/storage/cache_manager.py

"""Three-scope cache with stale-while-revalidate refreshes.

Scopes are checked process -> global -> caller. The process scope lives
in memory; global and caller scopes are rows in the persistence store,
read and written through ``asyncio.to_thread`` so sqlite never blocks
the event loop. A stale hit is returned immediately and triggers at most
one background refresh per key.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from src.config.settings import Settings
from src.models.cache_entry import (
    SCOPE_CALLER,
    SCOPE_GLOBAL,
    SCOPE_PROCESS,
    CacheEntry,
)
from src.services.contracts import PersistenceStore

logger = logging.getLogger("pageone.cache")

RefreshFn = Callable[[], Awaitable[dict[str, Any] | None]]


@dataclass
class CacheLookup:
    """Result of a cache read."""

    entry: CacheEntry
    scope: str
    stale: bool

    @property
    def payload(self) -> dict[str, Any]:
        return self.entry.payload


def default_ttls() -> dict[str, float]:
    return {
        SCOPE_PROCESS: Settings.PROCESS_CACHE_TTL,
        SCOPE_GLOBAL: Settings.GLOBAL_CACHE_TTL,
        SCOPE_CALLER: Settings.CALLER_CACHE_TTL,
    }


class CacheManager:
    """Read-through cache over a :class:`PersistenceStore`."""

    def __init__(
        self,
        store: PersistenceStore,
        clock: Callable[[], float] = time.time,
        ttls: dict[str, float] | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._ttls = {**default_ttls(), **(ttls or {})}
        self._process: dict[str, CacheEntry] = {}
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> frozenset[str]:
        """Keys with a background refresh currently running."""
        return frozenset(self._in_flight)

    # ── Reads ────────────────────────────────────────────

    async def get(
        self,
        key: str,
        caller_id: str | None = None,
        refresh: RefreshFn | None = None,
        source: str = "",
    ) -> CacheLookup | None:
        """Look *key* up across scopes.

        Returns the first fresh entry, else the first stale entry (and
        schedules *refresh* once for the key), else None on a miss. A
        fresh process-scope hit never touches the store.
        """
        now = self._clock()
        stale_hit: CacheLookup | None = None

        local = self._process.get(key)
        if local is not None:
            if local.is_fresh(now):
                logger.debug("Cache hit for %s (process scope)", key)
                return CacheLookup(local, SCOPE_PROCESS, stale=False)
            stale_hit = CacheLookup(local, SCOPE_PROCESS, stale=True)

        persisted = await asyncio.to_thread(
            self._persisted_candidates, key, caller_id
        )
        for scope, entry in persisted:
            if entry.is_fresh(now):
                self._backfill(key, entry, now)
                logger.debug("Cache hit for %s (%s scope)", key, scope)
                return CacheLookup(entry, scope, stale=False)
            if stale_hit is None:
                stale_hit = CacheLookup(entry, scope, stale=True)

        if stale_hit is None:
            logger.debug("Cache miss for %s", key)
            return None

        logger.debug(
            "Stale cache hit for %s (%s scope)", key, stale_hit.scope
        )
        if refresh is not None:
            self.schedule_refresh(key, refresh, caller_id, source)
        return stale_hit

    # ── Writes ───────────────────────────────────────────

    async def put(
        self,
        key: str,
        payload: dict[str, Any],
        source: str = "",
        caller_id: str | None = None,
        fetched_at: float | None = None,
    ) -> bool:
        """Write *payload* into every applicable scope.

        A write older than what is already stored is ignored. Returns
        True when the global row was written.
        """
        fetched = self._clock() if fetched_at is None else fetched_at

        current = self._process.get(key)
        if current is None or fetched >= current.fetched_at:
            self._process[key] = self._entry(
                SCOPE_PROCESS, key, payload, fetched, source
            )

        rows = [self._entry(SCOPE_GLOBAL, key, payload, fetched, source)]
        if caller_id:
            rows.append(self._entry(
                SCOPE_CALLER,
                self._caller_key(caller_id, key),
                payload,
                fetched,
                source,
            ))
        written = await asyncio.to_thread(self._write_rows, rows)
        return written[0]

    async def extend(
        self, key: str, seconds: float, caller_id: str | None = None,
    ) -> bool:
        """Push the expiry of *key* forward by *seconds* in every scope.

        Never moves an expiry backwards. Returns True if any scope moved.
        """
        if seconds <= 0:
            return False
        moved = False

        entry = self._process.get(key)
        if entry is not None:
            entry.expires_at += seconds
            moved = True

        rows = [(SCOPE_GLOBAL, key)]
        if caller_id:
            rows.append((SCOPE_CALLER, self._caller_key(caller_id, key)))
        persisted = await asyncio.to_thread(self._extend_rows, rows, seconds)
        return moved or persisted

    def invalidate_process(self, key: str | None = None) -> int:
        """Drop one key, or every key, from the in-memory scope."""
        if key is None:
            count = len(self._process)
            self._process.clear()
            return count
        return 1 if self._process.pop(key, None) is not None else 0

    async def invalidate(
        self, key: str, caller_id: str | None = None,
    ) -> int:
        """Remove *key* from every scope; return the entries dropped."""
        dropped = self.invalidate_process(key)
        rows = [(SCOPE_GLOBAL, key)]
        if caller_id:
            rows.append((SCOPE_CALLER, self._caller_key(caller_id, key)))
        dropped += await asyncio.to_thread(self._delete_rows, rows)
        if dropped:
            logger.info("Invalidated %s (%d entries)", key, dropped)
        return dropped

    # ── Background refresh ───────────────────────────────

    def schedule_refresh(
        self,
        key: str,
        refresh: RefreshFn,
        caller_id: str | None = None,
        source: str = "",
    ) -> bool:
        """Start a background refresh unless one is already running."""
        if key in self._in_flight:
            logger.debug("Refresh already in flight for %s", key)
            return False

        self._in_flight.add(key)
        task = asyncio.create_task(
            self._run_refresh(key, refresh, caller_id, source)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Scheduled background refresh for %s", key)
        return True

    async def drain(self) -> None:
        """Wait for every in-flight refresh to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Private helpers ──────────────────────────────────

    async def _run_refresh(
        self,
        key: str,
        refresh: RefreshFn,
        caller_id: str | None,
        source: str,
    ) -> None:
        try:
            payload = await refresh()
            if payload is not None:
                await self.put(
                    key, payload, source=source, caller_id=caller_id
                )
                logger.info("Background refresh stored %s", key)
        except Exception:
            logger.exception("Background refresh failed for %s", key)
        finally:
            self._in_flight.discard(key)

    def _entry(
        self,
        scope: str,
        key: str,
        payload: dict[str, Any],
        fetched_at: float,
        source: str,
    ) -> CacheEntry:
        return CacheEntry(
            scope=scope,
            key=key,
            payload=payload,
            fetched_at=fetched_at,
            expires_at=fetched_at + self._ttls[scope],
            source=source,
        )

    # The helpers below run on worker threads

    def _persisted_candidates(
        self, key: str, caller_id: str | None,
    ) -> list[tuple[str, CacheEntry]]:
        found: list[tuple[str, CacheEntry]] = []
        entry = self._store.get_cache_entry(SCOPE_GLOBAL, key)
        if entry is not None:
            found.append((SCOPE_GLOBAL, entry))
        if caller_id:
            entry = self._store.get_cache_entry(
                SCOPE_CALLER, self._caller_key(caller_id, key)
            )
            if entry is not None:
                found.append((SCOPE_CALLER, entry))
        return found

    def _write_rows(self, rows: list[CacheEntry]) -> list[bool]:
        return [self._store.upsert_cache_entry(row) for row in rows]

    def _extend_rows(
        self, rows: list[tuple[str, str]], seconds: float,
    ) -> bool:
        moved = False
        for scope, row_key in rows:
            row = self._store.get_cache_entry(scope, row_key)
            if row is None:
                continue
            if self._store.extend_cache_entry(
                scope, row_key, row.expires_at + seconds
            ):
                moved = True
        return moved

    def _delete_rows(self, rows: list[tuple[str, str]]) -> int:
        return sum(
            1 for scope, row_key in rows
            if self._store.delete_cache_entry(scope, row_key)
        )

    def _backfill(self, key: str, entry: CacheEntry, now: float) -> None:
        """Copy a lower-scope hit into the process scope."""
        self._process[key] = CacheEntry(
            scope=SCOPE_PROCESS,
            key=key,
            payload=entry.payload,
            fetched_at=entry.fetched_at,
            expires_at=min(
                entry.expires_at, now + self._ttls[SCOPE_PROCESS]
            ),
            source=entry.source,
        )

    @staticmethod
    def _caller_key(caller_id: str, key: str) -> str:
        return f"{caller_id}:{key}"
