"""Configuration module for feedstream."""

from feedstream.config.settings import (
    AppSettings,
    FetchOverrides,
    StorageSettings,
    get_app_settings,
    resolve_fetch_overrides,
    resolve_storage_settings,
)

__all__ = [
    "AppSettings",
    "FetchOverrides",
    "StorageSettings",
    "get_app_settings",
    "resolve_fetch_overrides",
    "resolve_storage_settings",
]
