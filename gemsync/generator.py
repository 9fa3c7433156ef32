"""
Creation (or regeneration) of the recipe for one gem.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Optional, Tuple

from .catalog import VersionSet
from .config import Settings
from .constraints import satisfies_all, slot_constraint
from .errors import MalformedRecipe, MalformedVersion, Unsatisfiable
from .interfaces import ArtifactFetcher, UpstreamIndex
from .models import Absent, Dependency, Recipe, Version, VersionDrift
from .probe import DistroPackageProbe
from .recipe import DEFAULT_EXTRA_LINES, apply_update, parse, render_build_function, serialize
from .slots import SlotResolver, distro_name
from .store import RecipeStore


logger = logging.getLogger(__name__)


@dataclass
class GenerateResult:
    path: Path
    recipe: Recipe
    missing: List[str] = field(default_factory=list)
    drifts: List[VersionDrift] = field(default_factory=list)


def current_username() -> Optional[str]:
    """``Name <email>`` from the git configuration, if both are set."""
    values = []
    for key in ("user.name", "user.email"):
        try:
            result = subprocess.run(
                ["git", "config", "--get", key], capture_output=True, text=True, timeout=10
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return None
        if result.returncode != 0 or not result.stdout.strip():
            return None
        values.append(result.stdout.strip())
    return f"{values[0]} <{values[1]}>"


class RecipeGenerator:
    """Write a PKGBUILD for the newest release of a gem."""

    def __init__(
        self,
        index: UpstreamIndex,
        store: RecipeStore,
        fetcher: ArtifactFetcher,
        settings: Optional[Settings] = None,
    ) -> None:
        self.index = index
        self.store = store
        self.fetcher = fetcher
        self.settings = settings or Settings()

    def _default_maintainers(self) -> Tuple[str, ...]:
        username = self.settings.packager or current_username()
        return (username,) if username else ()

    def _read_existing(self, recipe_dir: Path) -> Optional[Recipe]:
        if not self.store.exists(recipe_dir):
            return None
        try:
            return parse(self.store.read(recipe_dir), self.settings.distro_prefix)
        except MalformedRecipe as e:
            logger.warning("Ignoring existing recipe in %s: %s", recipe_dir, e)
            return None

    def _check_dependencies(
        self,
        dependencies: List[Dependency],
        version_set: VersionSet,
        probe: DistroPackageProbe,
    ) -> Tuple[List[str], List[str], List[VersionDrift]]:
        resolver = SlotResolver(version_set, self.settings.distro_prefix)
        generated: List[str] = []
        missing: List[str] = []
        drifts: List[VersionDrift] = []
        for dependency in dependencies:
            try:
                resolved = resolver.resolve(dependency)
                name, slot = resolved.distro_name, resolved.slot_suffix
            except Unsatisfiable as e:
                logger.warning("%s", e)
                name = distro_name(dependency.name, None, self.settings.distro_prefix)
                missing.append(name)
                generated.append(name)
                continue
            generated.append(name)

            found = probe.lookup(name)
            if isinstance(found, Absent):
                logger.warning("Cannot find package for gem dependency: %s", dependency.name)
                missing.append(name)
                continue

            gem_latest = version_set.latest(dependency.name, slot_constraint(slot))
            if gem_latest is not None:
                drift = probe.check_drift(found, gem_latest)
                if drift is not None:
                    drifts.append(drift)
            try:
                satisfied = satisfies_all(dependency.constraints, Version.parse(found.version))
            except MalformedVersion:
                satisfied = False
            if not satisfied:
                logger.warning("Package %s version does not satisfy gem dependency %s", name, dependency)
        return generated, missing, drifts

    def generate(
        self,
        gem_name: str,
        slot: Optional[str],
        version_set: VersionSet,
        probe: DistroPackageProbe,
    ) -> GenerateResult:
        requirement = slot_constraint(slot)
        latest = version_set.latest(gem_name, requirement)
        if latest is None:
            raise Unsatisfiable(Dependency(gem_name, requirement))

        recipe_dir = self.store.recipe_dir(gem_name, slot)
        logger.info("Generate PKGBUILD for %s", recipe_dir.name)
        existing = self._read_existing(recipe_dir)

        release = self.index.get_release(gem_name, latest)
        metadata = self.index.get_metadata(gem_name, latest)
        artifact = self.fetcher.fetch(gem_name, latest, recipe_dir, release.sha256)

        dependencies = [
            d for d in release.dependencies if d.name not in self.settings.bundled_gems
        ]
        generated, missing, drifts = self._check_dependencies(dependencies, version_set, probe)

        checksum_kind = existing.checksum_kind if existing else self.settings.checksum_kind
        licenses = metadata.licenses
        if not licenses and existing:
            # many gems leave the license empty; keep what the packager chose
            licenses = existing.licenses
        recipe = Recipe(
            gem_name=gem_name,
            gem_version=latest,
            release=1,
            slot=slot,
            native_dependencies=existing.native_dependencies if existing else ("ruby",),
            generated_dependencies=tuple(generated),
            licenses=tuple(licenses),
            maintainers=(existing.maintainers if existing and existing.maintainers
                         else self._default_maintainers()),
            contributors=existing.contributors if existing else (),
            description=metadata.summary,
            url=metadata.homepage,
            arch=("x86_64",) if artifact.has_extensions else ("any",),
            checksum_kind=checksum_kind,
            checksums=(artifact.checksum(checksum_kind),),
            extra_lines=existing.extra_lines if existing else DEFAULT_EXTRA_LINES,
            build_function=(existing.build_function if existing and existing.build_function
                            else render_build_function(artifact.license_files)),
        )
        if existing:
            bumped, _ = apply_update(existing, latest, generated)
            recipe = replace(recipe, release=bumped.release)

        path = self.store.write(recipe_dir, serialize(recipe, self.settings.distro_prefix))
        return GenerateResult(path=path, recipe=recipe, missing=missing, drifts=drifts)
