"""
Configuration settings for the MCP hub.

This module provides the process-wide settings for the hub: the global
enable switch, where server definitions and persisted state live, the
connection and HTTP timeouts, and the OAuth client identity presented to
authorization servers.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HubSettings(BaseSettings):
    """MCP hub configuration.

    Values come from ``MCP_HUB_*`` environment variables or a ``.env`` file:
    - Global switch and file locations
    - Connection and HTTP timeouts
    - OAuth redirect and client identity settings
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_HUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra environment variables
    )

    # General settings
    debug: bool = Field(default=False, description="Enable debug logging")
    mcp_enabled: bool = Field(
        default=True, description="Global switch for all tool servers"
    )
    servers_file: Optional[Path] = Field(
        default=None, description="JSON document with an 'mcpServers' mapping"
    )
    settings_file: Path = Field(
        default=Path.home() / ".mcp-hub" / "settings.json",
        description="Key-value settings store used for persisted state",
    )

    # Connection settings
    connect_timeout: float = Field(
        default=15.0, description="Seconds allowed for a server handshake"
    )
    extra_path_dirs: list[str] = Field(
        default_factory=lambda: ["/usr/local/bin", "/opt/homebrew/bin"],
        description="Directories prepended to PATH for local tool servers",
    )
    client_version: str = Field(
        default="0.1.0", description="Version reported to tool servers"
    )

    # OAuth settings
    discovery_timeout: float = Field(
        default=10.0, description="Seconds allowed per metadata discovery probe"
    )
    http_timeout: float = Field(
        default=30.0, description="Seconds allowed for token and registration calls"
    )
    token_expiry_buffer: int = Field(
        default=60, description="Seconds before expiry a token counts as expired"
    )
    default_expires_in: int = Field(
        default=3600, description="Token lifetime used when expires_in is omitted"
    )
    callback_scheme: str = Field(
        default="mcphub", description="Custom URL scheme owned by the host app"
    )
    callback_host: str = Field(
        default="oauth-callback", description="Host part of the redirect URI"
    )
    client_name: str = Field(
        default="MCP Hub", description="Client name sent during registration"
    )
    default_client_id: str = Field(
        default="mcp-hub-client",
        description="Client ID used when no registration is possible",
    )
    token_settings_key: str = Field(
        default="MCPOAuthTokens",
        description="Settings key under which the token map is stored",
    )

    @property
    def redirect_uri(self) -> str:
        """The redirect URI the OS delivers back into the application."""
        return f"{self.callback_scheme}://{self.callback_host}"


# Global configuration instance - lazy initialized
_hub_settings: HubSettings | None = None


def get_hub_settings(config: HubSettings | None = None) -> HubSettings:
    """Get the global hub settings with optional injection.

    Args:
        config: Optional settings instance to inject (useful for testing).
                If provided, sets this as the global settings.

    Returns:
        The global HubSettings instance.
    """
    global _hub_settings
    if config is not None:
        _hub_settings = config
    if _hub_settings is None:
        _hub_settings = HubSettings()
    return _hub_settings


def reset_settings() -> None:
    """Reset the settings singleton for testing.

    This clears the cached settings instance, allowing a fresh one
    to be created on the next call to get_hub_settings().
    """
    global _hub_settings
    _hub_settings = None
