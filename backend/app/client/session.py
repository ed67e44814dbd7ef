from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from backend.app.client.fetch_coordinator import FetchCoordinator, RetryPolicy
from backend.app.client.filter_state import FilterStore
from backend.app.client.query_cache import QueryCache
from backend.app.client.search_api import VideoSearchClient
from backend.app.client.url_sync import AddressBar, selection_from_query, url_sync_effect
from backend.app.config import AppSettings
from backend.app.models.cohorts import CohortTaxonomy
from backend.app.telemetry import TelemetryClient


@dataclass(frozen=True)
class SearchSession:
    store: FilterStore
    cache: QueryCache
    coordinator: FetchCoordinator


@asynccontextmanager
async def open_search_session(
    settings: AppSettings,
    taxonomy: CohortTaxonomy,
    address_bar: AddressBar,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    telemetry: TelemetryClient | None = None,
) -> AsyncIterator[SearchSession]:
    """
    Wire the search client stack and keep it refreshing on selection changes.

    The initial selection is read from the address bar and fetched once
    before the session is handed out.
    """
    store = FilterStore(
        taxonomy,
        initial=selection_from_query(address_bar.read_query(), taxonomy),
        on_commit=url_sync_effect(address_bar),
    )
    cache = QueryCache(
        stale_time_seconds=settings.client_stale_time_seconds,
        gc_time_seconds=settings.client_gc_time_seconds,
    )
    async with VideoSearchClient(
        base_url=settings.client_api_base_url,
        timeout_seconds=settings.client_http_timeout_seconds,
        transport=transport,
    ) as client:
        coordinator = FetchCoordinator(
            store=store,
            fetcher=client,
            cache=cache,
            retry_policy=RetryPolicy.from_settings(settings),
            telemetry=telemetry,
        )
        unsubscribe = coordinator.watch_store()
        try:
            await coordinator.refresh()
            yield SearchSession(store=store, cache=cache, coordinator=coordinator)
            await coordinator.drain()
        finally:
            unsubscribe()
