"""
Configuration loader — reads devsetup.yml into a TargetSpec.

The file is optional: without one, the built-in PHP 8.1 / Composer /
Laravel profile is used. When present, its keys override the defaults
and are validated by the TargetSpec pydantic model.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from devsetup.core.models.target import TargetSpec

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "devsetup.yml"


class ConfigError(Exception):
    """Raised when devsetup.yml is invalid or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for devsetup.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to devsetup.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_target(
    path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> TargetSpec:
    """Load and validate the target configuration.

    Args:
        path: Explicit path to devsetup.yml. None means built-in defaults.
        overrides: Values applied on top of the file (CLI flags).

    Returns:
        Validated, frozen TargetSpec.

    Raises:
        ConfigError: If the file is missing, not YAML, or invalid.
    """
    data: dict[str, Any] = {}

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")

        logger.debug("Loading target config from %s", path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}") from e

        try:
            loaded = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Expected a YAML mapping in {path}, got {type(loaded).__name__}")

        # The YAML may wrap everything under a "target" key or be flat
        data = dict(loaded.get("target", loaded))

    if overrides:
        data.update(overrides)

    try:
        target = TargetSpec.model_validate(data)
    except ValidationError as e:
        source = path or "defaults"
        raise ConfigError(f"Invalid target configuration ({source}): {e}") from e

    logger.info(
        "Target: %s %s, %d capabilities, %d files",
        target.runtime.name,
        target.runtime_version,
        len(target.capabilities),
        len(target.files),
    )
    return target


def project_root(config_path: Path | None) -> Path:
    """Project root: the config file's directory, or the cwd."""
    if config_path is None:
        return Path.cwd()
    return config_path.parent.resolve()
