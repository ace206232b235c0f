"""
Centralized version management for postscan.

The version is read from the VERSION file at the project root, falling back
to the installed distribution metadata.

Usage:
    from postscan.utils.version import VERSION
"""

from importlib import metadata
from pathlib import Path

_PROJECT_ROOT = Path(__file__).parent.parent.parent

_VERSION_FILE = _PROJECT_ROOT / "VERSION"


def _read_version() -> str:
    """Read version from VERSION file, with fallback."""
    try:
        if _VERSION_FILE.exists():
            return _VERSION_FILE.read_text().strip()
    except OSError:
        pass

    try:
        return metadata.version("postscan")
    except metadata.PackageNotFoundError:
        return "0.0.0"


# Public API - single source of truth for version
VERSION = _read_version()

