from __future__ import annotations

import logging
from dataclasses import dataclass
from types import TracebackType
from typing import Any, cast

import httpx

from backend.app.errors import TransientIOError, classify_http_status
from backend.app.models.cohorts import ALL_SENTINEL

LOGGER = logging.getLogger("stella_clips.client")

SEARCH_PATH = "/videos/search"


@dataclass(frozen=True)
class SearchPage:
    videos: list[dict[str, Any]]
    total: int
    limit: int
    offset: int


def build_search_params(
    *,
    cohort: str,
    member: str,
    sort: str | None,
    page: int,
    max_results: int,
) -> dict[str, str]:
    params: dict[str, str] = {
        "limit": str(max_results),
        "offset": str((page - 1) * max_results),
    }
    if cohort != ALL_SENTINEL:
        params["cohort"] = cohort
    if member != ALL_SENTINEL:
        params["member"] = member
    if sort is not None:
        params["sort"] = sort
    return params


class VideoSearchClient:
    """
    Async client for the search endpoint.

    Non-2xx answers raise `TerminalClientError` (4xx) or `TransientIOError`
    (anything else) with the status attached. Transport failures, timeouts
    included, raise `TransientIOError` without a status.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={"accept": "application/json", "user-agent": "stella-clips/1.0"},
        )

    async def __aenter__(self) -> VideoSearchClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(
        self,
        *,
        cohort: str,
        member: str,
        sort: str | None,
        page: int,
        max_results: int,
    ) -> SearchPage:
        params = build_search_params(
            cohort=cohort,
            member=member,
            sort=sort,
            page=page,
            max_results=max_results,
        )
        try:
            response = await self._client.get(SEARCH_PATH, params=params)
        except httpx.TransportError as exc:
            raise TransientIOError(f"Search request failed: {exc}") from exc

        if response.is_error:
            message = f"Search request failed: {response.status_code} {_error_message(response)}"
            LOGGER.debug("search api error status=%s params=%s", response.status_code, params)
            raise classify_http_status(response.status_code, message)

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientIOError("Search response was not valid JSON") from exc
        return _parse_search_page(payload)


def _parse_search_page(payload: object) -> SearchPage:
    if not isinstance(payload, dict):
        raise TransientIOError("Search response must be a JSON object")
    body = cast(dict[str, Any], payload)
    raw_videos = body.get("videos")
    videos = [
        cast(dict[str, Any], item)
        for item in (raw_videos if isinstance(raw_videos, list) else [])
        if isinstance(item, dict)
    ]
    return SearchPage(
        videos=videos,
        total=_int_field(body, "total"),
        limit=_int_field(body, "limit"),
        offset=_int_field(body, "offset"),
    )


def _int_field(body: dict[str, Any], name: str) -> int:
    value = body.get(name)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return 0


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(payload, dict):
        detail = cast(dict[str, Any], payload).get("detail")
        if isinstance(detail, dict):
            message = cast(dict[str, Any], detail).get("message")
            if isinstance(message, str):
                return message
        if isinstance(detail, str):
            return detail
    return response.reason_phrase
