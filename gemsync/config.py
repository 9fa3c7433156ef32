"""
Runtime settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple


# A number of gems is provided by the standard 'ruby' package; only these
# conflict with separately packaged gems and are never depended upon.
BUNDLED_GEMS = ("rake", "rdoc")


@dataclass
class Settings:
    """Settings shared by the sync engine, generator and collaborators."""

    root: Path = Path(".")
    distro_prefix: str = "ruby"
    bundled_gems: Tuple[str, ...] = BUNDLED_GEMS
    request_timeout: float = 60.0
    probe_timeout: float = 30.0
    checksum_kind: str = "sha256sums"
    workers: int = 1
    packager: Optional[str] = field(default_factory=lambda: os.environ.get("PACKAGER"))
    registry_urls: Dict[str, str] = field(default_factory=lambda: {
        "rubygems": "https://rubygems.org",
        "aur": "https://aur.archlinux.org",
        "archweb": "https://archlinux.org",
    })
