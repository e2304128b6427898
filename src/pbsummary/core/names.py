"""
Feature id to display name mapping.

Result tables carry internal identifiers (Ensembl gene ids, cluster codes,
model coefficient names). For display they are replaced by readable labels
from a two-column lookup table. Ids absent from the lookup are returned
unchanged, so a partial lookup never loses rows.

Examples:
    >>> names = NameMapping({"ENSMUSG00000059552": "Trp53"})
    >>> map_names(["ENSMUSG00000059552", "ENSMUSG00000000001"], names)
    ['Trp53', 'ENSMUSG00000000001']
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Iterable, Iterator

__all__ = ['NameMapping', 'map_names']


class NameMapping(Mapping):
    """Read-only id -> display name lookup with pass-through for misses.

    ``mapping[key]`` raises KeyError like any Mapping; use ``resolve`` (or
    ``map_names``) for the pass-through behavior.
    """

    def __init__(self, entries: Mapping[str, str] | Iterable[tuple[str, str]] = ()):
        self._entries: dict[str, str] = dict(entries)

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"NameMapping({len(self._entries)} entries)"

    def resolve(self, feature_id: str) -> str:
        return self._entries.get(feature_id, feature_id)


def map_names(ids: Iterable[str], lookup: Mapping[str, str] | None) -> list[str]:
    """Map ids to display names, same length and order as ``ids``."""
    if not lookup:
        return list(ids)
    return [lookup.get(i, i) for i in ids]
