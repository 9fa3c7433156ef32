"""
Lookup of distribution packages across the official repositories and the AUR.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

from .errors import MalformedVersion
from .interfaces import DistroSource, LookupResult
from .models import Absent, DistroPackageInfo, Version, VersionDrift


logger = logging.getLogger(__name__)


@dataclass
class ProbeCache:
    """Per-run cache of distribution lookups.

    Owned by one synchronization run; safe to share between worker threads.
    """

    lookups: Dict[str, LookupResult] = field(default_factory=dict)
    drift_reported: Set[str] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock)
    _name_locks: Dict[str, threading.Lock] = field(default_factory=dict)

    def lock_for(self, name: str) -> threading.Lock:
        with self.lock:
            return self._name_locks.setdefault(name, threading.Lock())


class DistroPackageProbe:
    """Find the published version and provenance of a distribution package."""

    def __init__(
        self,
        official: DistroSource,
        community: DistroSource,
        cache: Optional[ProbeCache] = None,
    ) -> None:
        self.official = official
        self.community = community
        self.cache = cache or ProbeCache()

    def lookup(self, distro_name: str) -> LookupResult:
        with self.cache.lock_for(distro_name):
            if distro_name in self.cache.lookups:
                logger.debug("Cache hit: distro package %s", distro_name)
                return self.cache.lookups[distro_name]
            result = self._query(distro_name)
            self.cache.lookups[distro_name] = result
        return result

    def _query(self, distro_name: str) -> LookupResult:
        result = self.official.query(distro_name)
        if isinstance(result, DistroPackageInfo):
            return result
        if result.inconclusive:
            logger.warning(
                "Lookup of %s in the official repositories was inconclusive (%s)",
                distro_name, result.reason,
            )
            return result

        result = self.community.query(distro_name)
        if isinstance(result, Absent):
            if result.inconclusive:
                logger.warning(
                    "Lookup of %s in the AUR was inconclusive (%s)", distro_name, result.reason
                )
            else:
                logger.warning("Package %s does not exist. Please create one.", distro_name)
        return result

    def check_drift(
        self, info: DistroPackageInfo, gem_version: Version
    ) -> Optional[VersionDrift]:
        """Report once per run when the distribution lags the gem index."""
        try:
            current = Version.parse(info.version) == gem_version
        except MalformedVersion:
            current = info.version == str(gem_version)
        if current:
            return None
        with self.cache.lock:
            if info.name in self.cache.drift_reported:
                return None
            self.cache.drift_reported.add(info.name)
        drift = VersionDrift(
            distro_name=info.name,
            distro_version=info.version,
            gem_version=str(gem_version),
            info_url=info.info_url,
        )
        logger.warning("%s", drift)
        return drift
