"""
Configuration module for the MCP hub.
"""

from .servers import ServerConfig, ServerConfigStore
from .settings import HubSettings, get_hub_settings, reset_settings
from .storage import JsonFileSettingsStore, MemorySettingsStore, SettingsStore

__all__ = [
    "HubSettings",
    "get_hub_settings",
    "reset_settings",
    "ServerConfig",
    "ServerConfigStore",
    "SettingsStore",
    "MemorySettingsStore",
    "JsonFileSettingsStore",
]
