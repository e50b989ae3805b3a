"""Configuration management for healthfold.

Handles loading and generating the TOML config file: database location,
logging, and import settings.
"""

from __future__ import annotations

import sys
import tomllib
from pathlib import Path

DEFAULT_CONFIG_PATH = "healthfold.toml"

DEFAULT_CONFIG_TEMPLATE = """\
# healthfold configuration

[database]
# SQLite file the importer writes to
path = "healthfold.db"

[logging]
# DEBUG, INFO, WARNING or ERROR
level = "INFO"
# Emit JSON log lines instead of console output
json = false

[import]
# Lab values extracted from documents below this confidence are not stored
# (0.0 keeps everything; extracted values score between 0.5 and 1.0)
min_confidence = 0.0
"""


def _default_config() -> dict:
    """Return default configuration."""
    return {
        "database": {"path": "healthfold.db"},
        "logging": {"level": "INFO", "json": False},
        "import": {"min_confidence": 0.0},
    }


def load_config(config_path: str = DEFAULT_CONFIG_PATH, warn_missing: bool = True) -> dict:
    """Load configuration from a TOML file.

    Returns a dict with the sections ``database``, ``logging`` and
    ``import``. Keys missing from the file keep their defaults; unknown
    sections are ignored.

    Falls back to defaults if the config file doesn't exist, printing a
    warning unless ``warn_missing`` is False.
    """
    path = Path(config_path)
    if not path.exists():
        if not warn_missing:
            return _default_config()
        print(
            f"Warning: Config file '{config_path}' not found, using defaults. "
            f"Run 'python -m healthfold init-config' to generate one.",
            file=sys.stderr,
        )
        return _default_config()

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    config = _default_config()
    for section, values in config.items():
        if isinstance(raw.get(section), dict):
            values.update(raw[section])

    min_confidence = float(config["import"]["min_confidence"])
    if not 0.0 <= min_confidence <= 1.0:
        raise ValueError(f"import.min_confidence must be between 0 and 1, got {min_confidence}")
    config["import"]["min_confidence"] = min_confidence
    return config


def generate_config(config_path: str = DEFAULT_CONFIG_PATH) -> str:
    """Write the default config file.

    Returns the path of the written config file.
    """
    Path(config_path).write_text(DEFAULT_CONFIG_TEMPLATE)
    return config_path
