"""
config_loader.py
-----------------
Cached access to the forecasting constants in config.yaml.

The file is parsed on first use and kept for the life of the process;
each engine stage reads its own block (recurrence, pattern_detection,
matching, forecasting, synthetic_fill, reporting) through an accessor.
Set BILL_FORECAST_CONFIG to point at an alternative file.
"""

import os
import yaml
from typing import Any, Dict


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")
CONFIG_PATH_ENV = "BILL_FORECAST_CONFIG"

_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Parse the forecasting config on first call, then serve it from cache.

    Args:
        config_path: Explicit file. Falls back to $BILL_FORECAST_CONFIG,
            then to the config.yaml shipped beside this module.

    Returns:
        Dict keyed by engine stage.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    path = config_path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        raise FileNotFoundError(f"Forecasting config not found: {path}")

    with open(path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f) or {}

    return _CONFIG_CACHE


def _get_block(name: str) -> Dict[str, Any]:
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No config block '{name}'. "
            f"Available: {list(config.keys())}"
        )
    return config[name]


def get_recurrence_config() -> Dict[str, Any]:
    """Returns the recurrence block (step sizes and period caps)."""
    return _get_block("recurrence")


def get_pattern_detection_config() -> Dict[str, Any]:
    """Returns the pattern_detection block."""
    return _get_block("pattern_detection")


def get_matching_config() -> Dict[str, Any]:
    """Returns the matching block."""
    return _get_block("matching")


def get_forecasting_config() -> Dict[str, Any]:
    """Returns the forecasting block."""
    return _get_block("forecasting")


def get_synthetic_fill_config() -> Dict[str, Any]:
    """Returns the synthetic_fill block."""
    return _get_block("synthetic_fill")


def get_reporting_config() -> Dict[str, Any]:
    """Returns the reporting block."""
    return _get_block("reporting")


def reset_config() -> None:
    """Drops the cached config so the next access re-reads the file."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
