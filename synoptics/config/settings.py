"""
Configuration and Feature Flags for the synoptics core

Policy switches are controlled via environment variables so a deployment can
toggle them without code changes. Layout tunables can additionally be loaded
from a YAML file.

Usage:
    from synoptics.config.settings import is_enabled

    if is_enabled('reject_reverse_connections'):
        # A -> B blocks a later B -> A
        ...

Environment Variables:
    SYNOPTICS_ENFORCE_PLACEMENT=true/false - Validate building/floor/zone consistency
    SYNOPTICS_REJECT_REVERSE=true/false    - Treat reverse-direction edges as duplicates
    SYNOPTICS_ZONE_COLUMNS=true/false      - Offset zone nodes inside their gas column
"""

import os
from pathlib import Path
from typing import Any, Dict, Tuple, Union

import yaml
from pydantic import ValidationError

from synoptics.models.layout_metadata import ColumnLayoutConfig, RouterConfig


# Feature flags with environment variable overrides
FEATURE_FLAGS: Dict[str, bool] = {
    'enforce_placement': os.getenv('SYNOPTICS_ENFORCE_PLACEMENT', 'true').lower() == 'true',

    'reject_reverse_connections': os.getenv('SYNOPTICS_REJECT_REVERSE', 'false').lower() == 'true',

    # Zone nodes are merged into the floor stack unless this is on
    'zone_columns': os.getenv('SYNOPTICS_ZONE_COLUMNS', 'false').lower() == 'true',
}


class ConfigLoadError(Exception):
    """Raised when a layout configuration file cannot be used."""
    pass


def _check_flag(flag: str) -> None:
    if flag not in FEATURE_FLAGS:
        available = ', '.join(FEATURE_FLAGS.keys())
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {available}"
        )


def is_enabled(flag: str) -> bool:
    """
    Check if a feature flag is enabled.

    Args:
        flag: Feature flag name (e.g., 'enforce_placement')

    Returns:
        True if flag is enabled, False otherwise

    Raises:
        KeyError: If flag name is not recognized

    Example:
        >>> is_enabled('reject_reverse_connections')
        False  # Default
    """
    _check_flag(flag)
    return FEATURE_FLAGS[flag]


def get_all_flags() -> Dict[str, bool]:
    """Get all feature flags and their current state."""
    return FEATURE_FLAGS.copy()


def set_flag(flag: str, enabled: bool) -> None:
    """
    Programmatically set a feature flag (for testing only).

    Args:
        flag: Feature flag name
        enabled: True to enable, False to disable

    Warning:
        This is for testing only. In production, use environment variables.
    """
    _check_flag(flag)
    FEATURE_FLAGS[flag] = enabled


def load_layout_config(path: Union[str, Path]) -> Tuple[ColumnLayoutConfig, RouterConfig]:
    """
    Load layout tunables from a YAML file.

    The file is a mapping with optional ``column_layout`` and ``router``
    sections; missing keys keep their defaults. When ``column_layout`` does
    not set ``zone_columns`` the feature flag decides.

    Example file:
        column_layout:
          start_x: 100
          valve_spacing: 50
        router:
          elbow_offset: 30

    Raises:
        ConfigLoadError: If the file is missing, not valid YAML, or holds invalid values
    """
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigLoadError(f"Layout config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in layout config: {e}")

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Layout config must be a mapping, got {type(data).__name__}")

    column_section: Dict[str, Any] = dict(data.get('column_layout') or {})
    router_section: Dict[str, Any] = dict(data.get('router') or {})
    column_section.setdefault('zone_columns', is_enabled('zone_columns'))

    try:
        return ColumnLayoutConfig(**column_section), RouterConfig(**router_section)
    except (TypeError, ValidationError) as e:
        raise ConfigLoadError(f"Invalid layout config values: {e}")


__all__ = [
    "FEATURE_FLAGS",
    "ConfigLoadError",
    "is_enabled",
    "get_all_flags",
    "set_flag",
    "load_layout_config",
]
