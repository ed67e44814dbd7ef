from __future__ import annotations

from backend.app.errors import QueryValidationError

VIDEO_SORTS: tuple[str, ...] = ("date", "views", "likes", "oldest")
DEFAULT_VIDEO_SORT = "date"


def normalize_sort(sort: str | None) -> str:
    """Canonical sort key; blank means the default date ordering."""
    if sort is None or not sort.strip():
        return DEFAULT_VIDEO_SORT
    normalized = sort.strip().lower()
    if normalized not in VIDEO_SORTS:
        raise QueryValidationError(
            f"Invalid sort: {sort}",
            field="sort",
            provided=sort,
            available=VIDEO_SORTS,
        )
    return normalized
