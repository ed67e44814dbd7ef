from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass

from backend.app.client.filter_state import FilterSelection
from backend.app.client.search_api import SearchPage


@dataclass(frozen=True)
class SearchCacheKey:
    cohort: str
    member: str
    sort: str | None
    page: int
    max_results: int

    @classmethod
    def from_selection(cls, selection: FilterSelection) -> SearchCacheKey:
        return cls(
            cohort=selection.cohort,
            member=selection.member,
            sort=selection.sort,
            page=selection.page,
            max_results=selection.max_results,
        )


@dataclass
class CacheEntry:
    value: SearchPage
    fetched_at: float
    last_used_at: float


class QueryCache:
    """
    Search results keyed by `SearchCacheKey`.

    An entry younger than `stale_time_seconds` is fresh and served without a
    fetch. Stale entries stay readable until unused for `gc_time_seconds`.
    """

    def __init__(
        self,
        *,
        stale_time_seconds: float = 300.0,
        gc_time_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stale_time_seconds = max(0.0, stale_time_seconds)
        self._gc_time_seconds = max(0.0, gc_time_seconds)
        self._clock = clock
        self._entries: dict[SearchCacheKey, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def put(self, key: SearchCacheKey, value: SearchPage) -> None:
        now = self._clock()
        self._entries[key] = CacheEntry(value=value, fetched_at=now, last_used_at=now)

    def get(self, key: SearchCacheKey) -> SearchPage | None:
        self.collect_garbage()
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry.last_used_at = self._clock()
        return entry.value

    def get_fresh(self, key: SearchCacheKey) -> SearchPage | None:
        if not self.is_fresh(key):
            return None
        return self.get(key)

    def is_fresh(self, key: SearchCacheKey) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        return self._clock() - entry.fetched_at < self._stale_time_seconds

    def invalidate(self, key: SearchCacheKey | None = None) -> None:
        if key is None:
            self._entries.clear()
            return
        self._entries.pop(key, None)

    def collect_garbage(self) -> int:
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if now - entry.last_used_at >= self._gc_time_seconds
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)
