"""
Single source of truth for the package version.

Reads from pyproject.toml at import time and caches.
All other files import VERSION from here instead of hardcoding.
"""

from __future__ import annotations

from pathlib import Path

__all__ = ["VERSION", "APP_NAME"]

APP_NAME = "AutoLedger"


def _read_version() -> str:
    """Read version directly from pyproject.toml (avoids stale pip cache)."""
    toml_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        if toml_path.exists():
            for line in toml_path.read_text().splitlines():
                if line.strip().startswith("version"):
                    # Parse: version = "1.2.0"
                    return line.split("=", 1)[1].strip().strip('"').strip("'")
    except OSError:
        pass
    return "1.2.0"  # Installed without the source tree


VERSION = _read_version()
