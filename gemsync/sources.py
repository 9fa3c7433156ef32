"""
Clients for the RubyGems index and the Arch Linux package sources.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Set

import requests
from tqdm import tqdm
from univers.gem import GemVersion, InvalidVersionError

from .catalog import VersionSet
from .config import Settings
from .constraints import parse_requirement
from .errors import UpstreamIndexError
from .interfaces import LookupResult
from .models import (
    Absent,
    CatalogEntry,
    Dependency,
    DistroPackageInfo,
    GemMetadata,
    GemRelease,
    Provenance,
    Version,
)


logger = logging.getLogger(__name__)


@dataclass
class IndexCache:
    """Shared in-memory caches for index and AUR requests.

    Worker threads share one instance. Each key is fetched under its own
    lock so a release is requested once per run; the ``requests.Session``
    is shared for connection pooling.
    """

    info_cache: Dict[str, str] = field(default_factory=dict)
    metadata_cache: Dict[str, GemMetadata] = field(default_factory=dict)
    session: requests.Session = field(default_factory=requests.Session)
    lock: threading.Lock = field(default_factory=threading.Lock)
    _key_locks: Dict[str, threading.Lock] = field(default_factory=dict)

    def lock_for(self, key: str) -> threading.Lock:
        with self.lock:
            return self._key_locks.setdefault(key, threading.Lock())


def _index_body(text: str):
    """Yield the data lines of a compact index file (after ``---``)."""
    lines = iter(text.splitlines())
    for line in lines:
        if line.strip() == "---":
            break
    else:
        lines = iter(text.splitlines())
    for line in lines:
        if line.strip():
            yield line


def parse_versions_index(text: str) -> VersionSet:
    """Build a VersionSet from the compact index ``/versions`` file.

    Versions prefixed with ``-`` are yanked. Platform-specific and
    prerelease versions are left out.
    """
    published: Dict[str, Set[str]] = {}
    for line in _index_body(text):
        parts = line.split(" ")
        if len(parts) < 2:
            continue
        name, versions = parts[0], parts[1]
        known = published.setdefault(name, set())
        for raw in versions.split(","):
            if raw.startswith("-"):
                known.discard(raw[1:])
            elif raw:
                known.add(raw)

    entries = []
    for name, versions in published.items():
        for raw in versions:
            try:
                gem_version = GemVersion(raw)
            except InvalidVersionError:
                logger.debug("Skipping %s %s (invalid version)", name, raw)
                continue
            if gem_version.prerelease():
                logger.debug("Skipping %s %s (platform or prerelease)", name, raw)
                continue
            entries.append(CatalogEntry(name, Version(gem_version)))
    return VersionSet(entries)


def parse_info_line(name: str, line: str) -> GemRelease:
    """Parse one line of a compact index ``/info/<gem>`` file."""
    raw_version, _, rest = line.partition(" ")
    deps_part, _, req_part = rest.partition("|")

    dependencies = []
    for item in deps_part.split(","):
        if not item.strip():
            continue
        dep_name, _, requirement = item.partition(":")
        dependencies.append(
            Dependency(dep_name.strip(), parse_requirement(requirement))
        )

    sha256 = None
    for item in req_part.split(","):
        key, _, value = item.partition(":")
        if key.strip() == "checksum":
            sha256 = value.strip()

    return GemRelease(
        name=name,
        version=Version.parse(raw_version),
        dependencies=tuple(dependencies),
        sha256=sha256,
    )


class RubyGemsIndex:
    """Upstream index backed by the RubyGems compact index and JSON API."""

    def __init__(self, settings: Settings, cache: Optional[IndexCache] = None) -> None:
        self.settings = settings
        self.base_url = settings.registry_urls["rubygems"].rstrip("/")
        self.cache = cache or IndexCache()

    def load_version_set(self) -> VersionSet:
        url = f"{self.base_url}/versions"
        logger.info("Fetching gem index from %s", url)
        chunks = []
        try:
            with self.cache.session.get(
                url, stream=True, timeout=self.settings.request_timeout
            ) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("content-length", 0))
                with tqdm(total=total_size, unit="B", unit_scale=True, desc="gem index") as pbar:
                    for chunk in response.iter_content(chunk_size=65536):
                        chunks.append(chunk)
                        pbar.update(len(chunk))
        except requests.RequestException as e:
            raise UpstreamIndexError(f"Cannot load gem index from {url}: {e}") from e

        version_set = parse_versions_index(b"".join(chunks).decode("utf-8"))
        logger.info("Loaded %d gem releases", len(version_set))
        return version_set

    def _get_info(self, name: str) -> str:
        with self.cache.lock_for(f"info:{name}"):
            if name in self.cache.info_cache:
                logger.debug("Cache hit: info %s", name)
                return self.cache.info_cache[name]

            url = f"{self.base_url}/info/{name}"
            try:
                with self.cache.session.get(url, timeout=self.settings.request_timeout) as response:
                    response.raise_for_status()
                    text = response.text
            except requests.RequestException as e:
                raise UpstreamIndexError(f"Cannot fetch dependency info for {name}: {e}") from e
            self.cache.info_cache[name] = text
        return text

    def get_release(self, name: str, version: Version) -> GemRelease:
        wanted = str(version)
        for line in _index_body(self._get_info(name)):
            if line.split(" ", 1)[0] == wanted:
                return parse_info_line(name, line)
        raise UpstreamIndexError(f"Release {name} {wanted} is not listed in the gem index")

    def get_metadata(self, name: str, version: Version) -> GemMetadata:
        cache_key = f"{name}@{version}"
        with self.cache.lock_for(f"metadata:{cache_key}"):
            if cache_key in self.cache.metadata_cache:
                return self.cache.metadata_cache[cache_key]

            url = f"{self.base_url}/api/v2/rubygems/{name}/versions/{version}.json"
            logger.info("Fetching metadata for %s %s", name, version)
            try:
                with self.cache.session.get(url, timeout=self.settings.request_timeout) as response:
                    response.raise_for_status()
                    data = response.json()
            except (requests.RequestException, ValueError) as e:
                raise UpstreamIndexError(f"Cannot fetch metadata for {name} {version}: {e}") from e
            metadata = GemMetadata(
                name=data.get("name", name),
                version=data.get("version", str(version)),
                summary=" ".join((data.get("summary") or data.get("info") or "").split()),
                homepage=data.get("homepage_uri") or data.get("source_code_uri") or data.get("project_uri") or "",
                licenses=tuple(data.get("licenses") or ()),
            )
            self.cache.metadata_cache[cache_key] = metadata
        return metadata


def strip_pkgrel(version: str) -> str:
    """``1:2.1.5-3`` -> ``2.1.5``."""
    version = version.strip()
    if re.match(r"^\d+:", version):
        version = version.split(":", 1)[1]
    return version.rsplit("-", 1)[0]


def parse_pacman_info(package: str, output: str, archweb_url: str) -> DistroPackageInfo:
    fields = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() and not key.startswith(" "):
            fields.setdefault(key.strip(), value.strip())
    repo = fields.get("Repository", "")
    arch = fields.get("Architecture", "")
    return DistroPackageInfo(
        name=package,
        version=strip_pkgrel(fields.get("Version", "")),
        provenance=Provenance.OFFICIAL,
        info_url=f"{archweb_url.rstrip('/')}/packages/{repo}/{arch}/{package}/",
    )


class PacmanRepository:
    """Official repositories, queried through ``pacman -Si``."""

    def __init__(self, settings: Settings) -> None:
        self.timeout = settings.probe_timeout
        self.archweb_url = settings.registry_urls["archweb"]

    def query(self, package: str) -> LookupResult:
        cmd = ["pacman", "-Si", package]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env={**os.environ, "LC_ALL": "C"},
            )
        except subprocess.TimeoutExpired:
            return Absent(package, inconclusive=True, reason="timeout")
        except FileNotFoundError:
            return Absent(package, inconclusive=True, reason="pacman is not available")

        if result.returncode != 0:
            if "was not found" in result.stderr:
                return Absent(package)
            reason = result.stderr.strip() or f"pacman exited with status {result.returncode}"
            return Absent(package, inconclusive=True, reason=reason)
        return parse_pacman_info(package, result.stdout, self.archweb_url)


class AurClient:
    """The AUR community overlay, queried through its RPC interface."""

    def __init__(self, settings: Settings, cache: Optional[IndexCache] = None) -> None:
        self.timeout = settings.probe_timeout
        self.base_url = settings.registry_urls["aur"].rstrip("/")
        self.cache = cache or IndexCache()

    def query(self, package: str) -> LookupResult:
        url = f"{self.base_url}/rpc/v5/info"
        try:
            with self.cache.session.get(
                url, params={"arg[]": package}, timeout=self.timeout
            ) as response:
                response.raise_for_status()
                data = response.json()
        except requests.Timeout:
            return Absent(package, inconclusive=True, reason="timeout")
        except (requests.RequestException, ValueError) as e:
            return Absent(package, inconclusive=True, reason=str(e))

        if data.get("type") == "error":
            return Absent(package, inconclusive=True, reason=data.get("error", "AUR error"))
        for result in data.get("results") or []:
            if result.get("Name") == package:
                return DistroPackageInfo(
                    name=package,
                    version=strip_pkgrel(result.get("Version", "")),
                    provenance=Provenance.COMMUNITY,
                    info_url=f"{self.base_url}/packages/{package}/",
                )
        return Absent(package)
