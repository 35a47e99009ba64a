"""Configuration package."""

from fuelcharge.config.settings import (
    AppSettings,
    DatabaseSettings,
    FirestoreSettings,
    GeminiSettings,
    Settings,
    StationSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "FirestoreSettings",
    "GeminiSettings",
    "Settings",
    "StationSettings",
    "get_settings",
    "validate_all_settings",
]
