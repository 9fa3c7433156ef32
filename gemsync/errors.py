"""
Exceptions raised while resolving and synchronizing recipes.
"""


class GemSyncError(Exception):
    """Base class for gemsync errors."""


class MalformedVersion(GemSyncError, ValueError):
    """A version string is not a dot-separated list of integers."""


class UnsupportedRequirement(GemSyncError, ValueError):
    """A requirement uses an operator outside the supported subset."""


class Unsatisfiable(GemSyncError):
    """No published release satisfies a dependency's constraints."""

    def __init__(self, dependency) -> None:
        super().__init__(f"Cannot resolve package dependency: {dependency}")
        self.dependency = dependency


class MalformedRecipe(GemSyncError):
    """An existing PKGBUILD violates the recipe format."""


class ChecksumMismatch(GemSyncError):
    """A downloaded artifact does not match its published checksum."""


class UpstreamIndexError(GemSyncError):
    """The upstream gem index could not be loaded."""
