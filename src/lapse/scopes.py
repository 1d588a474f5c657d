# OAuth scope catalog.
# Created: 2026-03-02
#
# The set of recognised scope names is static configuration.  It is loaded
# once into an immutable ScopeCatalog and handed to the consent and token
# exchange handlers explicitly.

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

# Grouped for the consent screen; group names are display-only.
SCOPE_GROUPS: dict[str, dict[str, str]] = {
    "Timelapses": {
        "timelapse:read": "View your timelapses",
        "timelapse:write": "Create and update timelapses",
        "snapshot:read": "View timelapse snapshots",
        "snapshot:write": "Delete timelapse snapshots",
    },
    "Comments": {
        "comment:write": "Create and delete comments",
    },
    "Profile": {
        "user:read": "Read your profile",
        "user:write": "Update your profile",
    },
    "Global": {
        "global:read": "View leaderboards and public activity",
    },
}


def normalize_scopes(raw: Iterable[str] | None) -> list[str]:
    """Trim each scope and drop blanks. Order and duplicates are preserved."""
    if not raw:
        return []
    return [s.strip() for s in raw if s.strip()]


def dedupe_scopes(scopes: Iterable[str]) -> list[str]:
    """Drop repeated scopes, keeping first-seen order."""
    return list(dict.fromkeys(scopes))


def split_scope_string(raw: str | None) -> list[str]:
    """Split a space-delimited OAuth ``scope`` parameter.

    Returns trimmed, non-blank, de-duplicated scopes.
    """
    if not raw:
        return []
    return dedupe_scopes(normalize_scopes(raw.split()))


def has_duplicates(scopes: list[str]) -> bool:
    return len(scopes) != len(set(scopes))


@dataclass(frozen=True)
class ScopeCatalog:
    """Immutable set of recognised scope names with their descriptions."""

    descriptions: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_groups(cls, groups: Mapping[str, Mapping[str, str]]) -> ScopeCatalog:
        merged: dict[str, str] = {}
        for group in groups.values():
            merged.update(group)
        return cls(descriptions=MappingProxyType(merged))

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self.descriptions)

    def __contains__(self, scope: object) -> bool:
        return scope in self.descriptions

    def __iter__(self):
        return iter(self.descriptions)

    def __len__(self) -> int:
        return len(self.descriptions)

    def unknown(self, scopes: Iterable[str]) -> list[str]:
        """Return the scopes that are not in the catalog, in request order."""
        return [s for s in scopes if s not in self.descriptions]

    def describe(self, scopes: Iterable[str]) -> dict[str, str]:
        return {s: self.descriptions[s] for s in scopes if s in self.descriptions}


# Singleton
_catalog: ScopeCatalog | None = None


def get_scope_catalog() -> ScopeCatalog:
    global _catalog
    if _catalog is None:
        _catalog = ScopeCatalog.from_groups(SCOPE_GROUPS)
    return _catalog
