"""bundlekit configuration system -- environment settings and properties files."""

from .settings import Settings, settings
from .properties_loader import (
    load_properties,
    parse_properties,
    properties_to_settings_kwargs,
    settings_from_properties,
)

__all__ = [
    "Settings",
    "load_properties",
    "parse_properties",
    "properties_to_settings_kwargs",
    "settings",
    "settings_from_properties",
]
