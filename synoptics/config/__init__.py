"""Feature flags and layout configuration."""

from .settings import (
    FEATURE_FLAGS,
    ConfigLoadError,
    is_enabled,
    get_all_flags,
    set_flag,
    load_layout_config,
)

__all__ = [
    "FEATURE_FLAGS",
    "ConfigLoadError",
    "is_enabled",
    "get_all_flags",
    "set_flag",
    "load_layout_config",
]
