"""
Mapping of gem dependencies onto slotted distribution package names.

A dependency that cannot use the newest release of a gem is mapped to a
versioned package, e.g. ``ruby-bar-2.1``. The suffix is the shortest
version prefix that separates the chosen release from the next, newer one.
"""

from __future__ import annotations

import logging
from typing import Optional

from .catalog import VersionSet
from .constraints import satisfies_all
from .errors import Unsatisfiable
from .models import Dependency, ResolvedDependency, Version


logger = logging.getLogger(__name__)


def compute_slot(chosen: Version, following: Version) -> str:
    """Shortest prefix of ``chosen`` that differs from ``following``.

    A component missing from ``following`` counts as different, so the walk
    always ends within ``chosen``.
    """
    parts = []
    for index, component in enumerate(chosen.components):
        parts.append(str(component))
        if index >= len(following.components) or following.components[index] != component:
            break
    return ".".join(parts)


def distro_name(gem_name: str, slot: Optional[str] = None, prefix: str = "ruby") -> str:
    name = f"{prefix}-{gem_name}"
    if slot:
        name = f"{name}-{slot}"
    return name


class SlotResolver:
    """Pick the best release for a dependency and name its package."""

    def __init__(self, version_set: VersionSet, prefix: str = "ruby") -> None:
        self.version_set = version_set
        self.prefix = prefix

    def resolve(self, dependency: Dependency) -> ResolvedDependency:
        versions = self.version_set.versions(dependency.name)
        chosen_index = None
        for index in range(len(versions) - 1, -1, -1):
            if satisfies_all(dependency.constraints, versions[index]):
                chosen_index = index
                break
        if chosen_index is None:
            raise Unsatisfiable(dependency)

        chosen = versions[chosen_index]
        slot = None
        if chosen_index < len(versions) - 1:
            slot = compute_slot(chosen, versions[chosen_index + 1])
            logger.debug("%s resolved to %s, slot %s", dependency, chosen, slot)

        return ResolvedDependency(
            original=dependency,
            chosen_version=chosen,
            slot_suffix=slot,
            distro_name=distro_name(dependency.name, slot, self.prefix),
        )


def resolve(dependency: Dependency, version_set: VersionSet, prefix: str = "ruby") -> ResolvedDependency:
    """Resolve one dependency against ``version_set``."""
    return SlotResolver(version_set, prefix).resolve(dependency)
