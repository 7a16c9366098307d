"""Cross-platform path resolution for loopmix data directories."""

import os
from pathlib import Path

from platformdirs import user_data_dir

from loopmix.constants import APP_NAME


def get_data_dir(config_override: str = "") -> Path:
    """Resolve the loopmix data directory.

    Priority: config_override > LOOPMIX_DATA_DIR env var > platform default.
    """
    if config_override:
        return Path(config_override)

    env_dir = os.environ.get("LOOPMIX_DATA_DIR")
    if env_dir:
        return Path(env_dir)

    return Path(user_data_dir(APP_NAME))


def get_recordings_dir(data_dir: Path) -> Path:
    return data_dir / "recordings"


def get_imports_dir(data_dir: Path) -> Path:
    return data_dir / "imports"


def get_mixes_dir(data_dir: Path) -> Path:
    return data_dir / "mixes"


def get_exports_dir(data_dir: Path) -> Path:
    return data_dir / "exports"


def get_temp_dir(data_dir: Path) -> Path:
    return data_dir / "tmp"


def get_config_path(data_dir: Path) -> Path:
    return data_dir / "config.toml"


def ensure_dirs(data_dir: Path) -> None:
    """Create all required subdirectories if they don't exist."""
    for sub in (
        get_recordings_dir(data_dir),
        get_imports_dir(data_dir),
        get_mixes_dir(data_dir),
        get_exports_dir(data_dir),
        get_temp_dir(data_dir),
    ):
        sub.mkdir(parents=True, exist_ok=True)


def uri_to_path(uri: str) -> Path:
    """Strip a file:// scheme if present."""
    if uri.startswith("file://"):
        return Path(uri[len("file://"):])
    return Path(uri)
