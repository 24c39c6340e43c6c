"""TOML configuration loader.

Loads loop and channel defaults from defaults.toml (or a user-supplied
file) into a validated CrucibleConfig.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import ValidationError

from crucible.schemas.config import CrucibleConfig

# Default config directory relative to the crucible package
_CONFIG_DIR = Path(__file__).parent / "config"


def default_config_path() -> Path:
    """Return the path of the bundled defaults.toml."""
    return _CONFIG_DIR / "defaults.toml"


def load_config(config_path: Path | None = None) -> CrucibleConfig:
    """Load Crucible configuration from a TOML file.

    Args:
        config_path: Path to a TOML file. Defaults to crucible/config/defaults.toml.

    Returns:
        CrucibleConfig with values from the TOML file. Keys missing from
        the file keep their schema defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the file is not valid TOML or fails validation.
    """
    path = config_path or default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in {path}: {exc}") from exc

    for section in ("loop", "critique", "remediation"):
        if section in raw and not isinstance(raw[section], dict):
            raise ValueError(f"[{section}] in {path} must be a table")

    try:
        return CrucibleConfig.model_validate(raw)
    except ValidationError as exc:
        raise ValueError(f"Invalid configuration in {path}: {exc}") from exc
