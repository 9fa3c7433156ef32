"""
Core data models shared by the resolver, probe and sync engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from pathlib import Path
from typing import List, Optional, Tuple

from univers.gem import GemVersion, InvalidVersionError

from .errors import MalformedVersion


@total_ordering
@dataclass(frozen=True, eq=False)
class Version:
    """A gem release version, ordered and compared the way RubyGems does.

    ``2.1`` and ``2.1.0`` are equal. Only numeric releases are accepted;
    prerelease and platform versions are rejected by :meth:`parse`.
    """

    gem_version: GemVersion

    @classmethod
    def parse(cls, text: str) -> "Version":
        value = (text or "").strip()
        if not value:
            raise MalformedVersion(f"Empty version string: {text!r}")
        try:
            gem_version = GemVersion(value)
        except InvalidVersionError as e:
            raise MalformedVersion(f"Malformed version string: {text!r}") from e
        if gem_version.prerelease():
            raise MalformedVersion(f"Prerelease or platform version: {text!r}")
        return cls(gem_version)

    @property
    def components(self) -> Tuple[int, ...]:
        return tuple(self.gem_version.segments)

    def _canonical(self) -> tuple:
        return tuple(self.gem_version.canonical_segments)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._canonical() == other._canonical()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.gem_version < other.gem_version

    def __hash__(self) -> int:
        return hash(self._canonical())

    def __str__(self) -> str:
        return str(self.gem_version)


class ConstraintKind(Enum):
    """Operators understood in a gem requirement."""

    EXACT = "="
    PESSIMISTIC = "~>"
    NOT_EQUAL = "!="
    GREATER = ">"
    GREATER_EQUAL = ">="
    LESS = "<"
    LESS_EQUAL = "<="


@dataclass(frozen=True)
class Constraint:
    kind: ConstraintKind
    version: Version

    def __str__(self) -> str:
        return f"{self.kind.value} {self.version}"


@dataclass(frozen=True)
class Dependency:
    """A runtime dependency as declared by a gem release."""

    name: str
    constraints: Tuple[Constraint, ...] = ()

    @property
    def constraint(self) -> Optional[Constraint]:
        """The single constraint term, or None when unconstrained or compound."""
        if len(self.constraints) == 1:
            return self.constraints[0]
        return None

    def __str__(self) -> str:
        if not self.constraints:
            return self.name
        return f"{self.name} ({', '.join(str(c) for c in self.constraints)})"


@dataclass(frozen=True)
class CatalogEntry:
    package_name: str
    version: Version


@dataclass(frozen=True)
class ResolvedDependency:
    """A gem dependency mapped onto a distribution package name."""

    original: Dependency
    chosen_version: Version
    slot_suffix: Optional[str]
    distro_name: str


class Provenance(Enum):
    OFFICIAL = "official"
    COMMUNITY = "community"


@dataclass(frozen=True)
class DistroPackageInfo:
    name: str
    version: str
    provenance: Provenance
    info_url: str


@dataclass(frozen=True)
class Absent:
    """A distribution package that could not be found.

    ``inconclusive`` is set when the lookup failed (timeout, missing tool,
    transient error) rather than receiving a definitive "not found".
    """

    name: str
    inconclusive: bool = False
    reason: str = "not found"


@dataclass(frozen=True)
class VersionDrift:
    """Advisory: the distribution publishes a different version than the gem index."""

    distro_name: str
    distro_version: str
    gem_version: str
    info_url: str

    def __str__(self) -> str:
        return (
            f"Package {self.distro_name} is out-of-date "
            f"(repo={self.distro_version} gem={self.gem_version}). "
            f"Please visit {self.info_url} and mark it so."
        )


@dataclass(frozen=True)
class GemRelease:
    """One published gem release with its runtime dependencies."""

    name: str
    version: Version
    dependencies: Tuple[Dependency, ...] = ()
    sha256: Optional[str] = None


@dataclass(frozen=True)
class GemMetadata:
    """Descriptive metadata for a gem release."""

    name: str
    version: str
    summary: str = ""
    homepage: str = ""
    licenses: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GemArtifact:
    """A downloaded gem file."""

    path: Path
    sha1: str
    sha256: str
    license_files: Tuple[str, ...] = ()
    has_extensions: bool = False

    def checksum(self, kind: str) -> str:
        if kind == "sha1sums":
            return self.sha1
        if kind == "sha256sums":
            return self.sha256
        raise ValueError(f"Unsupported checksum kind: {kind}")


@dataclass(frozen=True)
class Recipe:
    """Structured form of a PKGBUILD generated for a gem."""

    gem_name: str
    gem_version: Version
    release: int = 1
    slot: Optional[str] = None
    native_dependencies: Tuple[str, ...] = ("ruby",)
    generated_dependencies: Tuple[str, ...] = ()
    licenses: Tuple[str, ...] = ()
    maintainers: Tuple[str, ...] = ()
    contributors: Tuple[str, ...] = ()
    description: str = ""
    url: str = ""
    arch: Tuple[str, ...] = ("any",)
    checksum_kind: str = "sha256sums"
    checksums: Tuple[str, ...] = ()
    extra_lines: Tuple[str, ...] = ()
    build_function: str = ""

    @property
    def depends(self) -> Tuple[str, ...]:
        return self.native_dependencies + self.generated_dependencies


@dataclass(frozen=True)
class RecipeDiff:
    deps_changed: bool
    version_changed: bool

    @property
    def changed(self) -> bool:
        return self.deps_changed or self.version_changed


class SyncStatus(Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    BLOCKED = "blocked"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RecipeOutcome:
    """Result of synchronizing one recipe."""

    path: Path
    package: str
    status: SyncStatus
    old_version: Optional[str] = None
    new_version: Optional[str] = None
    release: Optional[int] = None
    reasons: List[str] = field(default_factory=list)
    published: Optional[bool] = None


@dataclass
class SyncReport:
    """Aggregate result of one synchronization run."""

    outcomes: List[RecipeOutcome] = field(default_factory=list)
    drifts: List[VersionDrift] = field(default_factory=list)

    def count(self, status: SyncStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    @property
    def updated(self) -> int:
        return self.count(SyncStatus.UPDATED)

    @property
    def unchanged(self) -> int:
        return self.count(SyncStatus.UNCHANGED)

    @property
    def blocked(self) -> int:
        return self.count(SyncStatus.BLOCKED)

    @property
    def skipped(self) -> int:
        return self.count(SyncStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(SyncStatus.FAILED)
