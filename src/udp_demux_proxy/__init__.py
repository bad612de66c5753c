"""UDP proxy that splits WireGuard and QUIC traffic arriving on one port."""

import pathlib
import tomllib
from importlib import metadata


def get_version() -> str:
    """Read version from pyproject.toml, falling back to installed metadata."""
    # Start from the current file's directory
    current_dir = pathlib.Path(__file__).parent
    # Look for pyproject.toml in parent directories
    for parent in [current_dir, *current_dir.parents]:
        pyproject_path = parent / "pyproject.toml"
        if pyproject_path.exists():
            with pyproject_path.open("rb") as f:
                pyproject_data = tomllib.load(f)
            project = pyproject_data.get("project", {})
            if project.get("name") == "udp-demux-proxy":
                return project["version"]

    try:
        return metadata.version("udp-demux-proxy")
    except metadata.PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()
