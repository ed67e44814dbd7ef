from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Literal, Protocol

from backend.app.client.filter_state import FilterSelection, FilterStore
from backend.app.client.query_cache import QueryCache, SearchCacheKey
from backend.app.client.search_api import SearchPage
from backend.app.config import AppSettings
from backend.app.errors import StellaClipsError, TransientIOError
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("stella_clips.client")

ViewStatus = Literal["idle", "loading", "success", "error"]
Sleep = Callable[[float], Awaitable[None]]


class SearchFetcher(Protocol):
    async def search(
        self,
        *,
        cohort: str,
        member: str,
        sort: str | None,
        page: int,
        max_results: int,
    ) -> SearchPage:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_ms: int = 1000
    cap_ms: int = 30_000

    @classmethod
    def from_settings(cls, settings: AppSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.client_retry_max_attempts,
            base_ms=settings.client_retry_base_ms,
            cap_ms=settings.client_retry_cap_ms,
        )

    def delay_seconds(self, attempt: int) -> float:
        return min(self.base_ms * 2**attempt, self.cap_ms) / 1000

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """`attempt` counts failures so far, starting at 0. 4xx errors are final."""
        return isinstance(error, TransientIOError) and attempt < self.max_retries


@dataclass(frozen=True)
class ViewState:
    """What is on screen: `data` always belongs to `key`, even after an error."""

    key: SearchCacheKey | None = None
    data: SearchPage | None = None
    status: ViewStatus = "idle"
    error: StellaClipsError | None = None


class FetchCoordinator:
    def __init__(
        self,
        *,
        store: FilterStore,
        fetcher: SearchFetcher,
        cache: QueryCache,
        retry_policy: RetryPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._cache = cache
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._telemetry = telemetry or TelemetryClient.disabled()
        self._view = ViewState()
        self._in_flight: dict[SearchCacheKey, asyncio.Task[SearchPage]] = {}
        self._scheduled: set[asyncio.Task[ViewState]] = set()

    @property
    def view(self) -> ViewState:
        return self._view

    @property
    def current_key(self) -> SearchCacheKey:
        return SearchCacheKey.from_selection(self._store.selection)

    def watch_store(self) -> Callable[[], None]:
        """Refresh on every selection change; must be called from a running event loop."""
        loop = asyncio.get_running_loop()

        def on_change(_: FilterSelection) -> None:
            task = loop.create_task(self.refresh())
            self._scheduled.add(task)
            task.add_done_callback(self._scheduled.discard)

        return self._store.subscribe(on_change)

    async def drain(self) -> None:
        while self._scheduled:
            await asyncio.gather(*self._scheduled)

    async def refresh(self) -> ViewState:
        key = self.current_key
        cached = self._cache.get_fresh(key)
        if cached is not None:
            LOGGER.debug("client cache hit key=%s", key)
            self._view = ViewState(key=key, data=cached, status="success")
            return self._view

        self._view = replace(self._view, status="loading", error=None)
        try:
            page = await self._fetch_deduplicated(key)
        except StellaClipsError as exc:
            if key == self.current_key:
                LOGGER.warning("client fetch failed key=%s error=%s", key, exc)
                self._view = replace(self._view, status="error", error=exc)
            return self._view

        if key != self.current_key:
            LOGGER.debug("client discarded superseded response key=%s", key)
            return self._view
        self._view = ViewState(key=key, data=page, status="success")
        return self._view

    async def _fetch_deduplicated(self, key: SearchCacheKey) -> SearchPage:
        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_with_retry(key))
            self._in_flight[key] = task
            task.add_done_callback(lambda _: self._in_flight.pop(key, None))
        return await asyncio.shield(task)

    async def _fetch_with_retry(self, key: SearchCacheKey) -> SearchPage:
        attempt = 0
        with self._telemetry.timed(
            "client.fetch.finish",
            cohort=key.cohort,
            member=key.member,
            page=key.page,
        ) as span:
            while True:
                try:
                    page = await self._fetcher.search(
                        cohort=key.cohort,
                        member=key.member,
                        sort=key.sort,
                        page=key.page,
                        max_results=key.max_results,
                    )
                except StellaClipsError as exc:
                    if not self._retry_policy.should_retry(exc, attempt):
                        span.set(attempts=attempt + 1)
                        raise
                    delay = self._retry_policy.delay_seconds(attempt)
                    LOGGER.info(
                        "client fetch retry key=%s attempt=%s delay_seconds=%s error=%s",
                        key,
                        attempt + 1,
                        delay,
                        exc,
                    )
                    attempt += 1
                    await self._sleep(delay)
                    continue
                span.set(attempts=attempt + 1, total=page.total)
                # Cached even if the selection moved on meanwhile.
                self._cache.put(key, page)
                return page
