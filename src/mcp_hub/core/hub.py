"""
MCPHub: the host-facing facade over the tool server pool.

Wires the configuration store, OAuth engine, connection coordinator, tool
registry and invocation marshaler together, and follows the configuration
store so that flipping the global switch connects or disconnects every
server.
"""

import asyncio
import logging
from typing import Any, Optional

from mcp_hub.auth.browser import AuthorizationPresenter
from mcp_hub.auth.flow import OAuthFlowEngine
from mcp_hub.auth.store import TokenStore
from mcp_hub.config.servers import ServerConfig, ServerConfigStore
from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.config.storage import JsonFileSettingsStore, SettingsStore
from mcp_hub.core.coordinator import ConnectionCoordinator, ConnectionStatus
from mcp_hub.core.exceptions import ConfigurationError, OAuthError
from mcp_hub.core.marshaler import ToolInvocationMarshaler
from mcp_hub.core.registry import ToolDescriptor, ToolRegistry

logger = logging.getLogger(__name__)


class MCPHub:
    """One pool of tools across every configured server.

    Args:
        config_store: Server definitions and the global enable switch.
        settings: Hub settings (defaults to the global settings).
        settings_store: Where OAuth tokens persist (defaults to settings_file).
        presenter: OAuth authorization surface (defaults to the system browser).
        coordinator: Connection coordinator (built from the other parts if omitted).
        oauth: OAuth engine (built from settings_store and presenter if omitted).
    """

    def __init__(
        self,
        config_store: ServerConfigStore,
        settings: Optional[HubSettings] = None,
        settings_store: Optional[SettingsStore] = None,
        presenter: Optional[AuthorizationPresenter] = None,
        coordinator: Optional[ConnectionCoordinator] = None,
        oauth: Optional[OAuthFlowEngine] = None,
    ) -> None:
        self.settings = settings or get_hub_settings()
        self.config_store = config_store
        self.coordinator = coordinator or ConnectionCoordinator(
            config_store, registry=ToolRegistry(), settings=self.settings
        )
        self.marshaler = ToolInvocationMarshaler(self.coordinator)

        if oauth is None:
            store = settings_store or JsonFileSettingsStore(self.settings.settings_file)
            oauth = OAuthFlowEngine(
                TokenStore(store, self.settings.token_settings_key),
                settings=self.settings,
                presenter=presenter,
            )
        self.oauth = oauth

        self._mcp_enabled = config_store.mcp_enabled
        self._auto_started = False
        self._tasks: set[asyncio.Task] = set()
        config_store.subscribe(self._on_config_changed)

    @classmethod
    def from_settings(cls, settings: Optional[HubSettings] = None, **kwargs: Any) -> "MCPHub":
        """Build a hub whose servers come from ``settings.servers_file``.

        Raises:
            ConfigurationError: If the servers file cannot be loaded.
        """
        settings = settings or get_hub_settings()
        if settings.servers_file is not None:
            store = ServerConfigStore.from_file(settings.servers_file, mcp_enabled=settings.mcp_enabled)
        else:
            store = ServerConfigStore(mcp_enabled=settings.mcp_enabled)
        return cls(store, settings=settings, **kwargs)

    async def __aenter__(self) -> "MCPHub":
        await self.start_if_enabled()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    @property
    def registry(self) -> ToolRegistry:
        return self.coordinator.registry

    @property
    def catalog(self) -> tuple[ToolDescriptor, ...]:
        return self.registry.catalog

    @property
    def statuses(self) -> dict[str, ConnectionStatus]:
        return self.coordinator.statuses

    def status(self, server_name: str) -> ConnectionStatus:
        return self.coordinator.status(server_name)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start_if_enabled(self) -> dict[str, ConnectionStatus]:
        """Connect all enabled servers, once per hub."""
        if self._auto_started:
            return {}
        self._auto_started = True
        if not self.config_store.mcp_enabled:
            logger.info("Tool servers are globally disabled; not starting")
            return {}
        return await self.connect_all()

    async def connect_all(self) -> dict[str, ConnectionStatus]:
        """Connect every enabled server that is neither live nor in flight."""
        return await self.coordinator.connect_all(self._connect)

    async def connect_server(self, server_name: str) -> ConnectionStatus:
        """Connect one server, using a stored (refreshed if needed) token.

        Never prompts the user; a remote server without a usable token is
        connected without an Authorization header.

        Raises:
            ConfigurationError: If no server has that name.
        """
        return await self._connect(self._require_config(server_name))

    async def authenticate_server(self, server_name: str) -> ConnectionStatus:
        """Run the interactive OAuth flow for a remote server, then (re)connect it.

        Raises:
            ConfigurationError: If no server has that name.
            OAuthError: If authentication fails or is cancelled.
        """
        config = self._require_config(server_name)
        authorized = await self.oauth.authenticate(config, interactive=True)

        if self.coordinator.is_connected(server_name) or self.coordinator.is_connecting(server_name):
            await self.coordinator.disconnect(server_name)
        self.config_store.set_enabled(server_name, True)
        return await self.coordinator.connect(authorized)

    async def enable_server(self, server_name: str) -> ConnectionStatus:
        """Re-enable a server (e.g. after its circuit breaker tripped) and connect it."""
        self._require_config(server_name)
        self.config_store.set_enabled(server_name, True)
        return await self.connect_server(server_name)

    async def disconnect_server(self, server_name: str) -> None:
        await self.coordinator.disconnect(server_name)

    async def disconnect_all(self) -> None:
        await self.coordinator.disconnect_all()

    async def close(self) -> None:
        """Cancel background reconciliation and disconnect every server."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.wait(self._tasks)
        await self.disconnect_all()

    # -------------------------------------------------------------------------
    # Tools and OAuth
    # -------------------------------------------------------------------------

    async def execute(self, tool_id: str, tool_name: str, tool_input: Any = None) -> dict[str, Any]:
        """Call a tool by name; see ToolInvocationMarshaler.execute."""
        return await self.marshaler.execute(tool_id, tool_name, tool_input)

    def handle_redirect(self, callback_url: str) -> bool:
        """Pass an OAuth redirect from the host's URL-scheme handler."""
        return self.oauth.handle_redirect(callback_url)

    def cancel_authentication(self) -> None:
        self.oauth.cancel_authentication()

    def logout(self, server_name: str) -> None:
        self.oauth.clear_token(server_name)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_config(self, server_name: str) -> ServerConfig:
        config = self.config_store.get(server_name)
        if config is None:
            raise ConfigurationError(f"Unknown server '{server_name}'")
        return config

    async def _connect(self, config: ServerConfig) -> ConnectionStatus:
        if self.coordinator.is_connected(config.name) or self.coordinator.is_connecting(config.name):
            logger.debug(f"Ignoring redundant connect for {config.name}")
            return self.coordinator.status(config.name)

        if config.url and self.oauth.token_store.get(config.name) is not None:
            try:
                config = await self.oauth.authenticate(config, interactive=False)
            except OAuthError as e:
                logger.warning(f"Stored OAuth token for {config.name} unusable: {e.user_message()}")
        return await self.coordinator.connect(config)

    def _on_config_changed(self) -> None:
        enabled = self.config_store.mcp_enabled
        if enabled != self._mcp_enabled:
            self._mcp_enabled = enabled
            logger.info(f"Tool servers globally {'enabled' if enabled else 'disabled'}")
            self._schedule(self.connect_all() if enabled else self.disconnect_all())
            return

        for name in list(self.coordinator.sessions):
            config = self.config_store.get(name)
            if config is None or not config.enabled:
                self._schedule(self.coordinator.disconnect(name))

    def _schedule(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("Configuration changed outside the event loop; change applies on next start")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
