"""
gemsync

Generate and keep in sync Arch Linux PKGBUILD recipes for Ruby gems.
"""

__version__ = "0.1.0"

from .cli import main

__all__ = ["main"]
