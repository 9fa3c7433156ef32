"""
Filesystem storage of recipe directories (``<prefix>-<gem>[-<slot>]/PKGBUILD``).
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from .errors import MalformedRecipe
from .slots import distro_name


logger = logging.getLogger(__name__)

RECIPE_FILENAME = "PKGBUILD"


class RecipeStore:
    """Read and write recipe files under one root directory."""

    def __init__(self, root: Path, prefix: str = "ruby") -> None:
        self.root = Path(root)
        self.prefix = prefix
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def discover(self) -> List[Path]:
        return sorted(p.parent for p in self.root.glob(f"{self.prefix}-*/{RECIPE_FILENAME}"))

    def recipe_dir(self, gem_name: str, slot: Optional[str] = None) -> Path:
        return self.root / distro_name(gem_name, slot, self.prefix)

    def exists(self, recipe_dir: Path) -> bool:
        return (recipe_dir / RECIPE_FILENAME).is_file()

    def read(self, recipe_dir: Path) -> str:
        path = recipe_dir / RECIPE_FILENAME
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise MalformedRecipe(f"{path} is not valid UTF-8: {e}") from e

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path.resolve(), threading.Lock())

    def write(self, recipe_dir: Path, text: str) -> Path:
        """Atomically replace the recipe file of ``recipe_dir``."""
        recipe_dir.mkdir(parents=True, exist_ok=True)
        path = recipe_dir / RECIPE_FILENAME
        with self._lock_for(path):
            fd, tmp_name = tempfile.mkstemp(dir=recipe_dir, prefix=".PKGBUILD.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.debug("Wrote %s", path)
        return path
