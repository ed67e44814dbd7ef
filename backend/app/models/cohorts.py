from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, cast

import yaml

from backend.app.errors import NotFoundError

ALL_SENTINEL = "ALL"

DEFAULT_COHORT_TABLE: dict[str, tuple[str, ...]] = {
    "MYSTIC": ("YUNI",),
    "UNIVERSE": ("HINA", "TABI", "LIZE", "MASHIRO"),
    "CLICHE": ("RIN", "NANA", "RICO", "BUKI"),
}


def canonical_name(value: str) -> str:
    return value.strip().upper()


class CohortTaxonomy:
    """
    Read-only cohort -> member table.

    Built once at startup from configuration data. Every member belongs to
    exactly one cohort and names are stored in their canonical uppercase form.
    """

    def __init__(self, table: Mapping[str, Sequence[str]]) -> None:
        normalized: dict[str, tuple[str, ...]] = {}
        seen_members: dict[str, str] = {}
        for raw_cohort, raw_members in table.items():
            cohort = canonical_name(raw_cohort)
            if not cohort or cohort == ALL_SENTINEL:
                raise ValueError(f"Invalid cohort name: {raw_cohort!r}")
            if cohort in normalized:
                raise ValueError(f"Duplicate cohort: {cohort}")
            members: list[str] = []
            for raw_member in raw_members:
                member = canonical_name(raw_member)
                if not member or member == ALL_SENTINEL:
                    raise ValueError(f"Invalid member name in {cohort}: {raw_member!r}")
                owner = seen_members.get(member)
                if owner is not None:
                    raise ValueError(f"Member {member} listed in both {owner} and {cohort}")
                seen_members[member] = cohort
                members.append(member)
            normalized[cohort] = tuple(members)

        if not seen_members:
            raise ValueError("Cohort taxonomy must define at least one member")
        self._table = normalized

    @property
    def cohorts(self) -> tuple[str, ...]:
        return tuple(self._table)

    @property
    def all_members(self) -> tuple[str, ...]:
        return tuple(member for members in self._table.values() for member in members)

    def members_of(self, cohort: str) -> tuple[str, ...]:
        members = self._table.get(cohort)
        if members is None:
            raise NotFoundError(f"Unknown cohort: {cohort}", kind="cohort", key=cohort)
        return members

    def cohort_of(self, member: str) -> str:
        for cohort, members in self._table.items():
            if member in members:
                return cohort
        raise NotFoundError(f"Unknown member: {member}", kind="member", key=member)

    def is_valid_member(self, value: str) -> bool:
        return any(value in members for members in self._table.values())

    def is_valid_cohort(self, value: str) -> bool:
        return value in self._table

    def normalize_member(self, value: str | None) -> str | None:
        if not isinstance(value, str):
            return None
        candidate = canonical_name(value)
        if self.is_valid_member(candidate):
            return candidate
        return None

    def normalize_cohort(self, value: str | None) -> str | None:
        if not isinstance(value, str):
            return None
        candidate = canonical_name(value)
        if self.is_valid_cohort(candidate):
            return candidate
        return None

    def as_dict(self) -> dict[str, list[str]]:
        return {cohort: list(members) for cohort, members in self._table.items()}


def default_taxonomy() -> CohortTaxonomy:
    return CohortTaxonomy(DEFAULT_COHORT_TABLE)


def load_cohort_taxonomy(path: Path | None) -> CohortTaxonomy:
    """Load the taxonomy from YAML (`cohorts: {NAME: [MEMBER, ...]}`) or use the default table."""
    if path is None:
        return default_taxonomy()

    with open(path, encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Cohort table at {path} must be a mapping")
    raw_cohorts = cast(dict[str, Any], data).get("cohorts")
    if not isinstance(raw_cohorts, dict):
        raise ValueError(f"Cohort table at {path} must define a `cohorts` mapping")

    table: dict[str, list[str]] = {}
    for raw_cohort, raw_members in cast(dict[object, object], raw_cohorts).items():
        if not isinstance(raw_cohort, str) or not isinstance(raw_members, list):
            raise ValueError(f"Cohort entry {raw_cohort!r} must map a name to a member list")
        members: list[str] = []
        for raw_member in cast(list[object], raw_members):
            if not isinstance(raw_member, str):
                raise ValueError(f"Member names in {raw_cohort} must be strings")
            members.append(raw_member)
        table[raw_cohort] = members
    return CohortTaxonomy(table)
