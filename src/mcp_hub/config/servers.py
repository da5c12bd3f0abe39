"""
Tool server definitions and the configuration store that owns them.

Server definitions are read-only to the connection machinery, with two
exceptions: a derived ``Authorization`` header may be merged into a copy of
a definition, and a failed connection flips ``enabled`` off.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from mcp_hub.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

TransportKind = Literal["stdio", "http", "sse"]

ConfigListener = Callable[[], None]


class ServerConfig(BaseModel):
    """Definition of one tool server.

    A server is either local (``command`` plus ``args``/``cwd``/``env``) or
    remote (``url`` plus optional ``headers`` and OAuth client credentials).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    command: Optional[str] = None
    args: list[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    env: dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    transport: Optional[TransportKind] = Field(default=None, alias="type")
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[SecretStr] = Field(default=None, alias="clientSecret")
    headers: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    @property
    def transport_kind(self) -> TransportKind:
        """The transport to use, inferred from the target when not declared."""
        if self.transport is not None:
            return self.transport
        return "stdio" if self.command else "http"

    @property
    def is_remote(self) -> bool:
        return self.transport_kind != "stdio"

    def with_auth_header(self, token: str, token_type: str = "Bearer") -> "ServerConfig":
        """Return a copy whose headers carry ``Authorization: <type> <token>``."""
        headers = dict(self.headers)
        headers["Authorization"] = f"{token_type} {token}"
        return self.model_copy(update={"headers": headers})

    def validate_target(self) -> None:
        """Raise ConfigurationError when the server has no usable target."""
        if self.transport_kind == "stdio" and not self.command:
            raise ConfigurationError(f"Server '{self.name}' has no command")
        if self.transport_kind != "stdio" and not self.url:
            raise ConfigurationError(f"Server '{self.name}' has no url")


class ServerConfigStore:
    """In-process configuration collaborator.

    Holds the ordered list of server definitions and the global enable
    switch, and notifies subscribers whenever either changes.
    """

    def __init__(
        self,
        servers: Optional[list[ServerConfig]] = None,
        mcp_enabled: bool = True,
    ) -> None:
        self._servers: dict[str, ServerConfig] = {}
        self._mcp_enabled = mcp_enabled
        self._listeners: list[ConfigListener] = []
        for server in servers or []:
            self._servers[server.name] = server

    @classmethod
    def from_file(cls, path: Path | str, mcp_enabled: bool = True) -> "ServerConfigStore":
        """Load server definitions from an ``{"mcpServers": {...}}`` document.

        Args:
            path: Path to the JSON document.
            mcp_enabled: Initial value of the global enable switch.

        Raises:
            ConfigurationError: If the file is unreadable or malformed.
        """
        try:
            document = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read server file {path}: {e}") from e

        entries = document.get("mcpServers") if isinstance(document, dict) else None
        if not isinstance(entries, dict):
            raise ConfigurationError(f"{path} has no 'mcpServers' mapping")

        servers = []
        for name, entry in entries.items():
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Invalid definition for '{name}': expected an object")
            try:
                servers.append(ServerConfig.model_validate({**entry, "name": name}))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid definition for '{name}': {e}") from e

        logger.info(f"Loaded {len(servers)} server definitions from {path}")
        return cls(servers, mcp_enabled=mcp_enabled)

    @property
    def mcp_enabled(self) -> bool:
        return self._mcp_enabled

    def servers(self) -> list[ServerConfig]:
        return list(self._servers.values())

    def enabled_servers(self) -> list[ServerConfig]:
        return [s for s in self._servers.values() if s.enabled]

    def get(self, name: str) -> Optional[ServerConfig]:
        return self._servers.get(name)

    def add(self, server: ServerConfig) -> None:
        self._servers[server.name] = server
        self._notify()

    def remove(self, name: str) -> None:
        if self._servers.pop(name, None) is not None:
            self._notify()

    def set_enabled(self, name: str, enabled: bool) -> None:
        server = self._servers.get(name)
        if server is None or server.enabled == enabled:
            return
        self._servers[name] = server.model_copy(update={"enabled": enabled})
        logger.info(f"Server '{name}' {'enabled' if enabled else 'disabled'}")
        self._notify()

    def set_mcp_enabled(self, enabled: bool) -> None:
        if self._mcp_enabled == enabled:
            return
        self._mcp_enabled = enabled
        self._notify()

    def subscribe(self, listener: ConfigListener) -> None:
        """Register a callback invoked after every change."""
        self._listeners.append(listener)

    def to_document(self) -> dict[str, Any]:
        """Serialize back to the ``mcpServers`` document shape."""
        servers = {}
        for server in self._servers.values():
            entry = server.model_dump(by_alias=True, exclude_none=True, exclude={"name"})
            if server.client_secret is not None:
                entry["clientSecret"] = server.client_secret.get_secret_value()
            servers[server.name] = entry
        return {"mcpServers": servers}

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
