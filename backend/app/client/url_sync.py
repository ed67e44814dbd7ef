from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Protocol
from urllib.parse import parse_qsl, urlencode

from backend.app.client.filter_state import (
    DEFAULT_MAX_RESULTS,
    MAX_RESULTS_LIMIT,
    FilterSelection,
)
from backend.app.errors import QueryValidationError
from backend.app.models.cohorts import ALL_SENTINEL, CohortTaxonomy
from backend.app.models.video_sorts import normalize_sort

MEMBER_PARAM_ALIASES: tuple[str, ...] = ("member", "stella")


class AddressBar(Protocol):
    def read_query(self) -> dict[str, str]:
        ...

    def replace_query(self, params: Mapping[str, str]) -> None:
        ...


class InMemoryAddressBar:
    """Address bar stand-in holding a path and its query parameters."""

    def __init__(self, path: str = "/", query: str = "") -> None:
        self._path = path
        self._params = dict(parse_qsl(query.lstrip("?"), keep_blank_values=True))
        self.history: list[str] = []

    @property
    def url(self) -> str:
        if not self._params:
            return self._path
        return f"{self._path}?{urlencode(self._params)}"

    def read_query(self) -> dict[str, str]:
        return dict(self._params)

    def replace_query(self, params: Mapping[str, str]) -> None:
        self._params = dict(params)
        self.history.append(self.url)


# Query parameter -> selection field. Order fixes the parameter order in URLs.
URL_FIELD_MAPPING: dict[str, Callable[[FilterSelection], object]] = {
    "cohort": lambda selection: selection.cohort,
    "member": lambda selection: selection.member,
    "page": lambda selection: selection.page,
    "sort": lambda selection: selection.sort,
    "maxResult": lambda selection: selection.max_results,
}


def is_removable_value(value: object) -> bool:
    return value is None or value == ALL_SENTINEL or value == ""


def apply_selection_to_params(
    selection: FilterSelection,
    params: Mapping[str, str],
) -> dict[str, str]:
    """Set or delete each mapped parameter; unrelated parameters are kept."""
    updated = dict(params)
    for alias in MEMBER_PARAM_ALIASES[1:]:
        updated.pop(alias, None)
    for param_name, read_field in URL_FIELD_MAPPING.items():
        value = read_field(selection)
        if is_removable_value(value):
            updated.pop(param_name, None)
        else:
            updated[param_name] = str(value)
    return updated


def sync_url(selection: FilterSelection, address_bar: AddressBar) -> None:
    address_bar.replace_query(apply_selection_to_params(selection, address_bar.read_query()))


def url_sync_effect(address_bar: AddressBar) -> Callable[[FilterSelection], None]:
    def effect(selection: FilterSelection) -> None:
        sync_url(selection, address_bar)

    return effect


def selection_from_query(
    query: Mapping[str, str] | str,
    taxonomy: CohortTaxonomy,
) -> FilterSelection:
    """
    Read the initial selection from a URL query.

    Unknown or malformed values fall back to their defaults. `page` is at
    least 1 and `maxResult` is clamped to 1..50. A valid member overrides
    the cohort with its owning cohort.
    """
    params = dict(parse_qsl(query.lstrip("?"))) if isinstance(query, str) else dict(query)

    cohort = taxonomy.normalize_cohort(params.get("cohort")) or ALL_SENTINEL
    member = ALL_SENTINEL
    for alias in MEMBER_PARAM_ALIASES:
        normalized_member = taxonomy.normalize_member(params.get(alias))
        if normalized_member is not None:
            member = normalized_member
            break
    if member != ALL_SENTINEL:
        cohort = taxonomy.cohort_of(member)

    return FilterSelection(
        cohort=cohort,
        member=member,
        page=max(1, _parse_int(params.get("page"), default=1)),
        sort=_parse_sort(params.get("sort")),
        max_results=max(
            1,
            min(MAX_RESULTS_LIMIT, _parse_int(params.get("maxResult"), default=DEFAULT_MAX_RESULTS)),
        ),
    )


def _parse_int(raw_value: str | None, *, default: int) -> int:
    if raw_value is None:
        return default
    try:
        return int(raw_value.strip())
    except ValueError:
        return default


def _parse_sort(raw_value: str | None) -> str | None:
    if raw_value is None or not raw_value.strip():
        return None
    try:
        return normalize_sort(raw_value)
    except QueryValidationError:
        return None
