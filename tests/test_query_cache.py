from __future__ import annotations

from backend.app.client.filter_state import FilterSelection
from backend.app.client.query_cache import QueryCache, SearchCacheKey
from backend.app.client.search_api import SearchPage


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _page(total: int) -> SearchPage:
    return SearchPage(videos=[], total=total, limit=5, offset=0)


def test_key_scopes_every_filter_field() -> None:
    base = SearchCacheKey.from_selection(FilterSelection(cohort="CLICHE", member="RIN"))
    assert base != SearchCacheKey.from_selection(FilterSelection(cohort="CLICHE", member="RIN", page=2))
    assert base != SearchCacheKey.from_selection(
        FilterSelection(cohort="CLICHE", member="RIN", max_results=10)
    )
    assert base != SearchCacheKey.from_selection(FilterSelection(cohort="CLICHE", member="RIN", sort="views"))
    assert base == SearchCacheKey.from_selection(FilterSelection(cohort="CLICHE", member="RIN"))


def test_entries_go_stale_after_stale_time() -> None:
    clock = _FakeClock()
    cache = QueryCache(stale_time_seconds=300, gc_time_seconds=1800, clock=clock)
    key = SearchCacheKey.from_selection(FilterSelection())
    cache.put(key, _page(3))

    clock.now += 299
    assert cache.get_fresh(key) == _page(3)

    clock.now += 1
    assert cache.is_fresh(key) is False
    assert cache.get_fresh(key) is None
    assert cache.get(key) == _page(3)


def test_unused_entries_are_collected() -> None:
    clock = _FakeClock()
    cache = QueryCache(stale_time_seconds=300, gc_time_seconds=1800, clock=clock)
    kept = SearchCacheKey.from_selection(FilterSelection(member="RIN", cohort="CLICHE"))
    dropped = SearchCacheKey.from_selection(FilterSelection(member="HINA", cohort="UNIVERSE"))
    cache.put(kept, _page(1))
    cache.put(dropped, _page(2))

    clock.now += 1000
    assert cache.get(kept) == _page(1)
    clock.now += 900

    assert cache.collect_garbage() == 1
    assert kept in cache
    assert dropped not in cache
    assert len(cache) == 1


def test_invalidate() -> None:
    cache = QueryCache(clock=_FakeClock())
    first = SearchCacheKey.from_selection(FilterSelection(page=1))
    second = SearchCacheKey.from_selection(FilterSelection(page=2))
    cache.put(first, _page(1))
    cache.put(second, _page(1))

    cache.invalidate(first)
    assert first not in cache
    cache.invalidate()
    assert len(cache) == 0
