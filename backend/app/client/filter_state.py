from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace

from backend.app.errors import QueryValidationError
from backend.app.models.cohorts import ALL_SENTINEL, CohortTaxonomy, canonical_name
from backend.app.models.video_sorts import VIDEO_SORTS, normalize_sort

LOGGER = logging.getLogger("stella_clips.client")

DEFAULT_MAX_RESULTS = 5
MAX_RESULTS_LIMIT = 50

SelectionListener = Callable[["FilterSelection"], None]


@dataclass(frozen=True)
class FilterSelection:
    cohort: str = ALL_SENTINEL
    member: str = ALL_SENTINEL
    page: int = 1
    sort: str | None = None
    max_results: int = DEFAULT_MAX_RESULTS


def apply_cohort(
    selection: FilterSelection,
    cohort: str,
    taxonomy: CohortTaxonomy,
) -> FilterSelection:
    """
    Select a cohort.

    `ALL` clears both cohort and member. A concrete cohort keeps the current
    member only when that member belongs to it.
    """
    normalized = canonical_name(cohort)
    if normalized == ALL_SENTINEL:
        return _with_filters(selection, cohort=ALL_SENTINEL, member=ALL_SENTINEL)
    if not taxonomy.is_valid_cohort(normalized):
        raise QueryValidationError(
            f"Invalid cohort: {cohort}",
            field="cohort",
            provided=cohort,
            available=(ALL_SENTINEL, *taxonomy.cohorts),
        )
    member = selection.member
    if member != ALL_SENTINEL and member not in taxonomy.members_of(normalized):
        member = ALL_SENTINEL
    return _with_filters(selection, cohort=normalized, member=member)


def apply_member(
    selection: FilterSelection,
    member: str,
    taxonomy: CohortTaxonomy,
) -> FilterSelection:
    """Select a member; a concrete member pulls its owning cohort along."""
    normalized = canonical_name(member)
    if normalized == ALL_SENTINEL:
        return _with_filters(selection, cohort=selection.cohort, member=ALL_SENTINEL)
    if not taxonomy.is_valid_member(normalized):
        raise QueryValidationError(
            f"Invalid member: {member}",
            field="member",
            provided=member,
            available=(ALL_SENTINEL, *taxonomy.all_members),
        )
    return _with_filters(selection, cohort=taxonomy.cohort_of(normalized), member=normalized)


def apply_page(selection: FilterSelection, page: int) -> FilterSelection:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise QueryValidationError("page must be a positive integer", field="page", provided=page)
    return replace(selection, page=page)


def apply_sort(selection: FilterSelection, sort: str | None) -> FilterSelection:
    resolved = None if sort is None or not sort.strip() else normalize_sort(sort)
    if resolved == selection.sort:
        return selection
    return replace(selection, sort=resolved, page=1)


def apply_max_results(selection: FilterSelection, max_results: int) -> FilterSelection:
    if (
        isinstance(max_results, bool)
        or not isinstance(max_results, int)
        or not 1 <= max_results <= MAX_RESULTS_LIMIT
    ):
        raise QueryValidationError(
            f"maxResult must be between 1 and {MAX_RESULTS_LIMIT}",
            field="maxResult",
            provided=max_results,
        )
    if max_results == selection.max_results:
        return selection
    return replace(selection, max_results=max_results, page=1)


def _with_filters(selection: FilterSelection, *, cohort: str, member: str) -> FilterSelection:
    if cohort == selection.cohort and member == selection.member:
        return selection
    return replace(selection, cohort=cohort, member=member, page=1)


class FilterStore:
    """
    Holds the current `FilterSelection`.

    Every setter runs a pure transition, then the single `on_commit` effect
    (URL sync), then notifies subscribers when the selection changed.
    """

    def __init__(
        self,
        taxonomy: CohortTaxonomy,
        *,
        initial: FilterSelection | None = None,
        on_commit: SelectionListener | None = None,
    ) -> None:
        self._taxonomy = taxonomy
        self._selection = initial or FilterSelection()
        self._on_commit = on_commit
        self._listeners: list[SelectionListener] = []

    @property
    def selection(self) -> FilterSelection:
        return self._selection

    @property
    def taxonomy(self) -> CohortTaxonomy:
        return self._taxonomy

    @property
    def sort_options(self) -> tuple[str, ...]:
        return VIDEO_SORTS

    def subscribe(self, listener: SelectionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_cohort(self, cohort: str) -> FilterSelection:
        return self._commit(apply_cohort(self._selection, cohort, self._taxonomy))

    def set_member(self, member: str) -> FilterSelection:
        return self._commit(apply_member(self._selection, member, self._taxonomy))

    def set_page(self, page: int) -> FilterSelection:
        return self._commit(apply_page(self._selection, page))

    def set_sort(self, sort: str | None) -> FilterSelection:
        return self._commit(apply_sort(self._selection, sort))

    def set_max_results(self, max_results: int) -> FilterSelection:
        return self._commit(apply_max_results(self._selection, max_results))

    def reset(self) -> FilterSelection:
        return self._commit(FilterSelection(max_results=self._selection.max_results))

    def _commit(self, selection: FilterSelection) -> FilterSelection:
        previous = self._selection
        self._selection = selection
        if self._on_commit is not None:
            self._on_commit(selection)
        if selection != previous:
            LOGGER.debug(
                "filter selection changed cohort=%s member=%s page=%s sort=%s max_results=%s",
                selection.cohort,
                selection.member,
                selection.page,
                selection.sort,
                selection.max_results,
            )
            for listener in list(self._listeners):
                listener(selection)
        return selection
