"""Shared fakes for the gemsync tests."""

from pathlib import Path
from typing import Dict, Iterable, Optional, Set, Tuple

import pytest

from gemsync.catalog import VersionSet
from gemsync.constraints import parse_requirement
from gemsync.errors import ChecksumMismatch, UpstreamIndexError
from gemsync.models import (
    Absent,
    Dependency,
    DistroPackageInfo,
    GemArtifact,
    GemMetadata,
    GemRelease,
    Provenance,
    Recipe,
    Version,
)
from gemsync.probe import DistroPackageProbe
from gemsync.recipe import DEFAULT_EXTRA_LINES, render_build_function, serialize


def dep(name: str, requirement: str = "") -> Dependency:
    return Dependency(name, parse_requirement(requirement))


class FakeIndex:
    def __init__(self, versions: Dict[str, Iterable[str]], releases: Iterable[GemRelease] = ()):
        self.versions = versions
        self.releases = {(r.name, str(r.version)): r for r in releases}
        self.release_calls = []

    def load_version_set(self) -> VersionSet:
        return VersionSet.from_mapping(self.versions)

    def get_release(self, name: str, version: Version) -> GemRelease:
        self.release_calls.append((name, str(version)))
        try:
            return self.releases[(name, str(version))]
        except KeyError:
            raise UpstreamIndexError(f"Release {name} {version} is not listed in the gem index")

    def get_metadata(self, name: str, version: Version) -> GemMetadata:
        return GemMetadata(
            name=name,
            version=str(version),
            summary=f"{name}'s summary",
            homepage=f"https://example.org/{name}",
            licenses=("MIT",),
        )


class FakeSource:
    def __init__(
        self,
        packages: Optional[Dict[str, str]] = None,
        provenance: Provenance = Provenance.OFFICIAL,
        inconclusive: Optional[Set[str]] = None,
    ):
        self.packages = packages or {}
        self.provenance = provenance
        self.inconclusive = inconclusive or set()
        self.calls = []

    def query(self, package: str):
        self.calls.append(package)
        if package in self.inconclusive:
            return Absent(package, inconclusive=True, reason="timeout")
        if package in self.packages:
            return DistroPackageInfo(
                name=package,
                version=self.packages[package],
                provenance=self.provenance,
                info_url=f"https://example.org/packages/{package}/",
            )
        return Absent(package)


class FakeFetcher:
    def __init__(self, license_files: Tuple[str, ...] = (), mismatch: bool = False):
        self.license_files = license_files
        self.mismatch = mismatch
        self.calls = []

    def fetch(self, name, version, dest_dir: Path, expected_sha256=None) -> GemArtifact:
        self.calls.append((name, str(version), expected_sha256))
        if self.mismatch:
            raise ChecksumMismatch(f"{name}-{version}.gem: sha256 does not match index")
        return GemArtifact(
            path=dest_dir / f"{name}-{version}.gem",
            sha1="1" * 40,
            sha256=f"sha256-{name}-{version}",
            license_files=self.license_files,
        )


def make_probe(official=None, community=None) -> DistroPackageProbe:
    return DistroPackageProbe(
        FakeSource(official, Provenance.OFFICIAL),
        FakeSource(community, Provenance.COMMUNITY),
    )


def write_recipe(
    root: Path,
    gem_name: str,
    version: str,
    release: int = 1,
    generated: Tuple[str, ...] = (),
    slot: Optional[str] = None,
) -> Path:
    recipe = Recipe(
        gem_name=gem_name,
        gem_version=Version.parse(version),
        release=release,
        slot=slot,
        generated_dependencies=generated,
        licenses=("MIT",),
        maintainers=("Jane Doe <jane@example.org>",),
        description=f"{gem_name} library",
        url=f"https://example.org/{gem_name}",
        checksums=(f"sha256-{gem_name}-{version}",),
        extra_lines=DEFAULT_EXTRA_LINES,
        build_function=render_build_function(("LICENSE",)),
    )
    recipe_dir = root / (f"ruby-{gem_name}-{slot}" if slot else f"ruby-{gem_name}")
    recipe_dir.mkdir(parents=True, exist_ok=True)
    (recipe_dir / "PKGBUILD").write_text(serialize(recipe), encoding="utf-8")
    return recipe_dir


@pytest.fixture
def recipe_root(tmp_path: Path) -> Path:
    root = tmp_path / "recipes"
    root.mkdir()
    return root
