"""
In-memory snapshot of every released (name, version) pair of the gem index.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Optional, Set, Tuple

from .constraints import satisfies_all
from .models import CatalogEntry, Constraint, Version


class VersionSet:
    """Published versions partitioned by gem name, each sorted ascending.

    Built once per run and read-only afterwards, so it can be shared
    between worker threads.
    """

    def __init__(self, entries: Iterable[CatalogEntry] = ()) -> None:
        grouped: Dict[str, Set[Version]] = {}
        for entry in entries:
            grouped.setdefault(entry.package_name, set()).add(entry.version)
        self._versions = MappingProxyType(
            {name: tuple(sorted(versions)) for name, versions in grouped.items()}
        )

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Iterable[str]]) -> "VersionSet":
        """Build from ``{name: ["1.0", "1.1"]}``; handy for tests and fixtures."""
        return cls(
            CatalogEntry(name, Version.parse(v))
            for name, versions in mapping.items()
            for v in versions
        )

    def __contains__(self, name: str) -> bool:
        return name in self._versions

    def __len__(self) -> int:
        return sum(len(v) for v in self._versions.values())

    def __iter__(self) -> Iterator[CatalogEntry]:
        for name in sorted(self._versions):
            for version in self._versions[name]:
                yield CatalogEntry(name, version)

    def names(self) -> Tuple[str, ...]:
        return tuple(sorted(self._versions))

    def versions(self, name: str) -> Tuple[Version, ...]:
        return self._versions.get(name, ())

    def latest(
        self, name: str, constraints: Iterable[Constraint] = ()
    ) -> Optional[Version]:
        """Highest published version of ``name`` meeting ``constraints``."""
        terms = tuple(constraints)
        for version in reversed(self.versions(name)):
            if satisfies_all(terms, version):
                return version
        return None
