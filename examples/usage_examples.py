#!/usr/bin/env python3
"""
Example script showing how to use gemsync from Python.
"""

from pathlib import Path

from gemsync.artifacts import GemFetcher
from gemsync.catalog import VersionSet
from gemsync.config import Settings
from gemsync.constraints import parse_requirement
from gemsync.generator import RecipeGenerator
from gemsync.models import Dependency
from gemsync.probe import DistroPackageProbe
from gemsync.reporting import print_summary, save_report_json
from gemsync.slots import resolve
from gemsync.sources import AurClient, IndexCache, PacmanRepository, RubyGemsIndex
from gemsync.store import RecipeStore
from gemsync.sync import SyncEngine


def example_slot_resolution():
    """Example: Map a gem dependency onto a package name offline."""
    print("="*60)
    print("Example 1: Slot Resolution")
    print("="*60)

    versions = VersionSet.from_mapping({"rack": ["2.1.0", "2.1.4", "2.2.0", "3.0.0"]})
    for requirement in ["", "~> 2.1.0", "~> 2.1", "= 2.2.0"]:
        dependency = Dependency("rack", parse_requirement(requirement))
        resolved = resolve(dependency, versions)
        print(f"{str(dependency):30} -> {resolved.distro_name} ({resolved.chosen_version})")


def example_generate_recipe(settings, index, probe):
    """Example: Create a PKGBUILD for one gem."""
    print("\n" + "="*60)
    print("Example 2: Generate a Recipe")
    print("="*60)

    store = RecipeStore(settings.root, settings.distro_prefix)
    generator = RecipeGenerator(index, store, GemFetcher(settings, index.cache.session), settings)
    result = generator.generate("rack", None, index.load_version_set(), probe)

    print(f"\nWrote: {result.path}")
    print(f"Version: {result.recipe.gem_version}-{result.recipe.release}")
    print(f"Depends: {' '.join(result.recipe.depends)}")
    if result.missing:
        print(f"Missing packages: {', '.join(result.missing)}")


def example_sync(settings, index, probe):
    """Example: Synchronize every recipe under the root directory."""
    print("\n" + "="*60)
    print("Example 3: Synchronize Recipes")
    print("="*60)

    store = RecipeStore(settings.root, settings.distro_prefix)
    engine = SyncEngine(index, store, GemFetcher(settings, index.cache.session), settings)
    report = engine.sync_all(probe)

    print_summary(report)
    print(f"\nReport saved to: {save_report_json(report, settings.root / 'report.json')}")


if __name__ == "__main__":
    import sys

    print("gemsync - Example Usage")
    print("="*60)
    print("\nNOTE: Examples 2 and 3 require network access and pacman.")

    settings = Settings(root=Path("./output/recipes"), workers=4)
    cache = IndexCache()
    index = RubyGemsIndex(settings, cache)
    probe = DistroPackageProbe(PacmanRepository(settings), AurClient(settings, cache))

    try:
        example_slot_resolution()
        example_generate_recipe(settings, index, probe)
        example_sync(settings, index, probe)

        print("\n" + "="*60)
        print("Examples completed successfully!")
        print("="*60)

    except Exception as e:
        print(f"\nError running examples: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
