"""
Synchronization of existing recipes with the gem index and the distribution.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .catalog import VersionSet
from .config import Settings
from .constraints import satisfies_all, slot_constraint
from .errors import GemSyncError, MalformedRecipe, MalformedVersion, Unsatisfiable
from .interfaces import ArtifactFetcher, PackagePublisher, UpstreamIndex
from .models import (
    Absent,
    Dependency,
    RecipeOutcome,
    SyncReport,
    SyncStatus,
    Version,
    VersionDrift,
)
from .probe import DistroPackageProbe
from .recipe import apply_update, parse, serialize
from .slots import SlotResolver
from .store import RecipeStore


logger = logging.getLogger(__name__)


class SyncEngine:
    """Bring every recipe up to date with the newest upstream release."""

    def __init__(
        self,
        index: UpstreamIndex,
        store: RecipeStore,
        fetcher: ArtifactFetcher,
        settings: Optional[Settings] = None,
        publisher: Optional[PackagePublisher] = None,
    ) -> None:
        self.index = index
        self.store = store
        self.fetcher = fetcher
        self.settings = settings or Settings()
        self.publisher = publisher

    @property
    def prefix(self) -> str:
        return self.settings.distro_prefix

    def sync_all(self, probe: DistroPackageProbe) -> SyncReport:
        version_set = self.index.load_version_set()
        return self.run(self.store.discover(), version_set, probe)

    def run(
        self,
        recipe_dirs: Iterable[Path],
        version_set: VersionSet,
        probe: DistroPackageProbe,
    ) -> SyncReport:
        resolver = SlotResolver(version_set, self.prefix)
        dirs = list(recipe_dirs)

        def task(recipe_dir: Path) -> Tuple[RecipeOutcome, List[VersionDrift]]:
            return self.sync_recipe(recipe_dir, version_set, resolver, probe)

        if self.settings.workers > 1:
            with ThreadPoolExecutor(max_workers=self.settings.workers) as pool:
                results = list(tqdm(pool.map(task, dirs), total=len(dirs), desc="recipes", unit="recipe"))
        else:
            results = [task(d) for d in tqdm(dirs, desc="recipes", unit="recipe")]

        report = SyncReport()
        for outcome, drifts in results:
            report.outcomes.append(outcome)
            report.drifts.extend(drifts)
        return report

    def sync_recipe(
        self,
        recipe_dir: Path,
        version_set: VersionSet,
        resolver: SlotResolver,
        probe: DistroPackageProbe,
    ) -> Tuple[RecipeOutcome, List[VersionDrift]]:
        package = recipe_dir.name
        try:
            recipe = parse(self.store.read(recipe_dir), self.prefix)
            latest = version_set.latest(recipe.gem_name, slot_constraint(recipe.slot))
        except (MalformedRecipe, MalformedVersion, OSError) as e:
            logger.error("Skipping %s: malformed recipe: %s", recipe_dir, e)
            return RecipeOutcome(recipe_dir, package, SyncStatus.FAILED, reasons=[str(e)]), []

        outcome = RecipeOutcome(
            recipe_dir,
            package,
            SyncStatus.UNCHANGED,
            old_version=str(recipe.gem_version),
            release=recipe.release,
        )
        if latest is None:
            logger.warning("Could not find gem releases for package %s", package)
            outcome.status = SyncStatus.SKIPPED
            outcome.reasons.append("NoUpstreamRelease")
            return outcome, []
        outcome.new_version = str(latest)

        try:
            release = self.index.get_release(recipe.gem_name, latest)
        except GemSyncError as e:
            logger.error("Cannot read dependencies of %s %s: %s", recipe.gem_name, latest, e)
            outcome.status = SyncStatus.FAILED
            outcome.reasons.append(str(e))
            return outcome, []

        dependencies = [
            d for d in release.dependencies if d.name not in self.settings.bundled_gems
        ]
        generated, reasons, drifts = self._resolve_dependencies(
            package, dependencies, version_set, resolver, probe
        )
        if reasons:
            logger.warning("%s is blocked: %s", package, "; ".join(reasons))
            outcome.status = SyncStatus.BLOCKED
            outcome.reasons.extend(reasons)
            return outcome, drifts

        updated, changes = apply_update(recipe, latest, generated)
        if not changes.changed:
            return outcome, drifts

        if changes.version_changed:
            try:
                artifact = self.fetcher.fetch(
                    recipe.gem_name, latest, recipe_dir, release.sha256
                )
                checksum = artifact.checksum(updated.checksum_kind)
            except (GemSyncError, OSError, ValueError) as e:
                logger.error("Cannot fetch %s %s: %s", recipe.gem_name, latest, e)
                outcome.status = SyncStatus.FAILED
                outcome.reasons.append(str(e))
                return outcome, drifts
            updated = replace(updated, checksums=(checksum,) + updated.checksums[1:])

        self.store.write(recipe_dir, serialize(updated, self.prefix))
        logger.info(
            "%s: %s-%s -> %s-%s",
            package, recipe.gem_version, recipe.release, updated.gem_version, updated.release,
        )
        outcome.status = SyncStatus.UPDATED
        outcome.release = updated.release

        if self.publisher is not None:
            outcome.published = self.publisher.publish(recipe_dir, updated)
            if not outcome.published:
                logger.error("Cannot upload changes for package %s", package)
        return outcome, drifts

    def _resolve_dependencies(
        self,
        package: str,
        dependencies: Sequence[Dependency],
        version_set: VersionSet,
        resolver: SlotResolver,
        probe: DistroPackageProbe,
    ) -> Tuple[List[str], List[str], List[VersionDrift]]:
        """Map gem dependencies to package names; reasons list what blocks the recipe."""
        generated: List[str] = []
        reasons: List[str] = []
        drifts: List[VersionDrift] = []
        for dependency in dependencies:
            try:
                resolved = resolver.resolve(dependency)
            except Unsatisfiable as e:
                reasons.append(str(e))
                continue
            generated.append(resolved.distro_name)

            found = probe.lookup(resolved.distro_name)
            if isinstance(found, Absent):
                state = "inconclusive" if found.inconclusive else "absent"
                reasons.append(f"{resolved.distro_name} is {state} ({found.reason})")
                continue

            gem_latest = version_set.latest(
                dependency.name, slot_constraint(resolved.slot_suffix)
            )
            if gem_latest is not None:
                drift = probe.check_drift(found, gem_latest)
                if drift is not None:
                    drifts.append(drift)

            try:
                distro_version = Version.parse(found.version)
            except MalformedVersion:
                reasons.append(f"{resolved.distro_name} has unparsable version {found.version!r}")
                continue
            if not satisfies_all(dependency.constraints, distro_version):
                reasons.append(
                    f"{package}=>{resolved.distro_name} {found.version} does not satisfy "
                    f"gem dependency {dependency}"
                )
        return generated, reasons, drifts
