"""
Interfaces for the upstream index, distribution sources and artifact handling.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union

from .catalog import VersionSet
from .models import (
    Absent,
    DistroPackageInfo,
    GemArtifact,
    GemMetadata,
    GemRelease,
    Recipe,
    Version,
)


LookupResult = Union[DistroPackageInfo, Absent]


class UpstreamIndex(Protocol):
    """Read-only view of the gem index."""

    def load_version_set(self) -> VersionSet:
        ...

    def get_release(self, name: str, version: Version) -> GemRelease:
        ...

    def get_metadata(self, name: str, version: Version) -> GemMetadata:
        ...


class DistroSource(Protocol):
    """One distribution package source (official repositories or the overlay)."""

    def query(self, package: str) -> LookupResult:
        ...


class ArtifactFetcher(Protocol):
    """Download a gem release and report its checksums."""

    def fetch(
        self, name: str, version: Version, dest_dir: Path, expected_sha256: Optional[str] = None
    ) -> GemArtifact:
        ...


class PackagePublisher(Protocol):
    """Build (and possibly upload) a package from its recipe directory."""

    def publish(self, recipe_dir: Path, recipe: Recipe) -> bool:
        ...
