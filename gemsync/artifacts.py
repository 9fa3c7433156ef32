"""
Gem artifact download and package build/publish steps.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
import tarfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import requests
from tqdm import tqdm

from .config import Settings
from .errors import ChecksumMismatch
from .models import GemArtifact, Recipe, Version


logger = logging.getLogger(__name__)

_LICENSE_MARKERS = ("license", "copying", "copyright")


def inspect_gem(path: Path) -> Tuple[Tuple[str, ...], bool]:
    """Return (top-level license files, has native extensions) of a .gem file."""
    try:
        with tarfile.open(path) as gem:
            member = gem.extractfile("data.tar.gz")
            if member is None:
                return (), False
            with tarfile.open(fileobj=member, mode="r:gz") as data:
                names = data.getnames()
    except (tarfile.TarError, KeyError, OSError) as e:
        logger.warning("Cannot inspect %s: %s", path, e)
        return (), False

    license_files = sorted(
        name for name in names
        if "/" not in name and any(marker in name.lower() for marker in _LICENSE_MARKERS)
    )
    has_extensions = any(
        name.startswith("ext/") and name.endswith("extconf.rb") for name in names
    )
    return tuple(license_files), has_extensions


class GemFetcher:
    """Download gem releases from RubyGems."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.base_url = settings.registry_urls["rubygems"].rstrip("/")
        self.timeout = settings.request_timeout
        self.session = session or requests.Session()

    def fetch(
        self,
        name: str,
        version: Version,
        dest_dir: Path,
        expected_sha256: Optional[str] = None,
    ) -> GemArtifact:
        filename = f"{name}-{version}.gem"
        url = f"{self.base_url}/downloads/{filename}"
        dest_dir.mkdir(parents=True, exist_ok=True)
        dest = dest_dir / filename

        logger.info("Downloading %s", url)
        sha1 = hashlib.sha1()
        sha256 = hashlib.sha256()
        with self.session.get(url, stream=True, timeout=self.timeout) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("content-length", 0))
            with open(dest, "wb") as f:
                with tqdm(total=total_size, unit="B", unit_scale=True, desc=filename) as pbar:
                    for chunk in response.iter_content(chunk_size=8192):
                        f.write(chunk)
                        sha1.update(chunk)
                        sha256.update(chunk)
                        pbar.update(len(chunk))

        if expected_sha256 and sha256.hexdigest() != expected_sha256:
            dest.unlink()
            raise ChecksumMismatch(
                f"{filename}: sha256 {sha256.hexdigest()} does not match index {expected_sha256}"
            )

        license_files, has_extensions = inspect_gem(dest)
        return GemArtifact(
            path=dest,
            sha1=sha1.hexdigest(),
            sha256=sha256.hexdigest(),
            license_files=license_files,
            has_extensions=has_extensions,
        )


class MakepkgPublisher:
    """Build a recipe with ``makepkg`` and commit it with ``git``."""

    def __init__(self, install: bool = False, commit: bool = True) -> None:
        self.install = install
        self.commit = commit

    def _run(self, cmd: Sequence[str], cwd: Path) -> Optional[str]:
        try:
            result = subprocess.run(list(cmd), cwd=cwd, capture_output=True, text=True)
        except FileNotFoundError as e:
            logger.error("Cannot run %s: %s", cmd[0], e)
            return None
        if result.returncode != 0:
            logger.error("%s failed in %s: %s", " ".join(cmd), cwd, result.stderr.strip())
            return None
        return result.stdout

    def publish(self, recipe_dir: Path, recipe: Recipe) -> bool:
        build_cmd: List[str] = ["makepkg", "-f", "--noconfirm"]
        if self.install:
            build_cmd.append("-i")
        if self._run(build_cmd, recipe_dir) is None:
            return False

        srcinfo = self._run(["makepkg", "--printsrcinfo"], recipe_dir)
        if srcinfo is None:
            return False
        (recipe_dir / ".SRCINFO").write_text(srcinfo, encoding="utf-8")

        if not self.commit:
            return True
        message = f"{recipe_dir.name}: bump to {recipe.gem_version}-{recipe.release}"
        if self._run(["git", "add", "PKGBUILD", ".SRCINFO"], recipe_dir) is None:
            return False
        return self._run(["git", "commit", "-m", message], recipe_dir) is not None
