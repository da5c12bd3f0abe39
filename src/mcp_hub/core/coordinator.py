"""
Per-server connection state machine.

States: ``notConnected -> connecting -> connected | failed(reason)``; both
terminal states return to ``notConnected`` on an explicit disconnect.

All state lives on one event loop and every check-and-mark sequence runs
without an intervening ``await``, so two concurrent ``connect`` calls for
the same server cannot both pass the deduplication check.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from mcp_hub.config.servers import ServerConfig, ServerConfigStore
from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.core.exceptions import (
    ConfigurationError,
    ConnectionTimeoutError,
    ProcessLaunchError,
)
from mcp_hub.core.process import ServerProcessSupervisor
from mcp_hub.core.registry import ToolRegistry
from mcp_hub.core.session import ClosedCallback, ServerSession

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    NOT_CONNECTED = "notConnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Typed reason recorded with a failed connection."""

    CONFIGURATION = "configuration"
    PROCESS_LAUNCH = "process_launch"
    TIMEOUT = "timeout"
    HANDSHAKE = "handshake"


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection status of one server; ``reason`` is set only when failed."""

    state: ConnectionState
    reason: Optional[str] = None
    failure: Optional[FailureKind] = None

    @classmethod
    def failed(cls, failure: FailureKind, reason: str) -> "ConnectionStatus":
        return cls(ConnectionState.FAILED, reason=reason, failure=failure)

    def __str__(self) -> str:
        if self.state == ConnectionState.FAILED:
            return f"failed({self.reason})"
        return self.state.value


NOT_CONNECTED = ConnectionStatus(ConnectionState.NOT_CONNECTED)
CONNECTING = ConnectionStatus(ConnectionState.CONNECTING)
CONNECTED = ConnectionStatus(ConnectionState.CONNECTED)

StatusListener = Callable[[str, ConnectionStatus], None]
SessionFactory = Callable[[ServerConfig, ClosedCallback], ServerSession]
ConnectFunc = Callable[[ServerConfig], Awaitable["ConnectionStatus"]]


class ConnectionCoordinator:
    """Owns sessions, connection statuses and in-flight connects.

    Args:
        config_store: Configuration collaborator; failed servers are disabled in it.
        registry: Tool catalog updated on connect and disconnect.
        settings: Hub settings (connect timeout).
        supervisor: Process supervisor handed to new sessions.
        session_factory: Builds a ServerSession for a config (for tests).
    """

    def __init__(
        self,
        config_store: ServerConfigStore,
        registry: Optional[ToolRegistry] = None,
        settings: Optional[HubSettings] = None,
        supervisor: Optional[ServerProcessSupervisor] = None,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.config_store = config_store
        self.registry = registry or ToolRegistry()
        self.settings = settings or get_hub_settings()
        self.supervisor = supervisor or ServerProcessSupervisor(settings=self.settings)
        self._session_factory = session_factory or self._default_session

        self._sessions: dict[str, ServerSession] = {}
        self._status: dict[str, ConnectionStatus] = {}
        self._in_flight: set[str] = set()
        self._abandoned: set[str] = set()
        self._listeners: list[StatusListener] = []

    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------

    def status(self, server_name: str) -> ConnectionStatus:
        return self._status.get(server_name, NOT_CONNECTED)

    @property
    def statuses(self) -> dict[str, ConnectionStatus]:
        """Copy of the serverName -> ConnectionStatus map."""
        return dict(self._status)

    @property
    def sessions(self) -> dict[str, ServerSession]:
        """Snapshot of live sessions in connection order."""
        return dict(self._sessions)

    def is_connecting(self, server_name: str) -> bool:
        return server_name in self._in_flight

    def is_connected(self, server_name: str) -> bool:
        return server_name in self._sessions

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # -------------------------------------------------------------------------
    # Connect / disconnect
    # -------------------------------------------------------------------------

    async def connect(self, config: ServerConfig) -> ConnectionStatus:
        """Bring one server online.

        A call for a server that is already connected or connecting is a
        no-op returning the current status.

        Returns:
            The resulting status; failures are recorded, not raised.
        """
        name = config.name
        if name in self._in_flight or name in self._sessions:
            logger.debug(f"Ignoring redundant connect for {name}")
            return self.status(name)

        self._in_flight.add(name)
        self._abandoned.discard(name)
        self._set_status(name, CONNECTING)
        try:
            return await self._connect(config)
        finally:
            self._in_flight.discard(name)
            self._abandoned.discard(name)

    async def connect_all(
        self, connect: Optional[ConnectFunc] = None
    ) -> dict[str, ConnectionStatus]:
        """Connect every enabled server that is neither live nor in flight.

        Args:
            connect: Per-server connect step (defaults to ``self.connect``);
                     the hub passes one that merges stored OAuth tokens first.
        """
        connect = connect or self.connect
        if not self.config_store.mcp_enabled:
            return {}

        pending = [
            server
            for server in self.config_store.enabled_servers()
            if server.name not in self._sessions and server.name not in self._in_flight
        ]
        results = await asyncio.gather(*(connect(server) for server in pending))
        return {server.name: status for server, status in zip(pending, results)}

    async def disconnect(self, server_name: str) -> None:
        """Close a server's session (or abandon its in-flight connect)."""
        if server_name in self._in_flight:
            self._abandoned.add(server_name)

        session = self._sessions.pop(server_name, None)
        self.registry.remove_server(server_name)
        self._set_status(server_name, NOT_CONNECTED)

        if session is not None:
            await session.close()
            logger.info(f"Disconnected from {server_name}")

    async def disconnect_all(self) -> None:
        names = list(self._sessions) + list(self._in_flight)
        await asyncio.gather(*(self.disconnect(name) for name in names))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _default_session(
        self, config: ServerConfig, on_closed: ClosedCallback
    ) -> ServerSession:
        return ServerSession(
            config, supervisor=self.supervisor, settings=self.settings, on_closed=on_closed
        )

    async def _connect(self, config: ServerConfig) -> ConnectionStatus:
        name = config.name
        try:
            config.validate_target()
            session = self._session_factory(config, self._on_session_closed)
            await self._open_with_timeout(session)
        except ConfigurationError as e:
            return self._fail(name, FailureKind.CONFIGURATION, str(e))
        except ProcessLaunchError as e:
            return self._fail(name, FailureKind.PROCESS_LAUNCH, str(e))
        except ConnectionTimeoutError as e:
            return self._fail(name, FailureKind.TIMEOUT, str(e))
        except Exception as e:
            return self._fail(name, FailureKind.HANDSHAKE, str(e) or type(e).__name__)

        if name in self._abandoned:
            logger.info(f"Connect to {name} finished after disconnect; closing")
            await session.close()
            return self.status(name)

        try:
            tools = await session.list_tools()
        except Exception as e:
            logger.warning(f"Failed to get tools from {name}: {e}")
            tools = []

        if name in self._abandoned or not session.is_open:
            await session.close()
            return self.status(name)

        self._sessions[name] = session
        self.registry.set_tools(name, tools)
        self._set_status(name, CONNECTED)
        logger.info(
            f"Connected to {name}",
            extra={"tool_count": len(tools), "tools": [t.name for t in tools]},
        )
        return CONNECTED

    async def _open_with_timeout(self, session: ServerSession) -> None:
        """Race the handshake against the connect timeout; the loser is cancelled."""
        timeout = self.settings.connect_timeout
        handshake = asyncio.create_task(session.open())
        timer = asyncio.create_task(asyncio.sleep(timeout))
        try:
            done, _ = await asyncio.wait(
                {handshake, timer}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (handshake, timer):
                if not task.done():
                    task.cancel()

        if handshake in done:
            handshake.result()
            return

        await session.wait_closed()
        raise ConnectionTimeoutError(session.server_name, timeout)

    def _fail(self, name: str, failure: FailureKind, reason: str) -> ConnectionStatus:
        if name in self._abandoned:
            logger.info(f"Connect to {name} failed after disconnect: {reason}")
            return self.status(name)

        status = ConnectionStatus.failed(failure, reason)
        logger.error(f"Connection to {name} failed: {reason}", extra={"failure": failure.value})
        self._set_status(name, status)
        # Circuit breaker: stays disabled until re-enabled by the user
        self.config_store.set_enabled(name, False)
        return status

    def _on_session_closed(
        self, session: ServerSession, error: Optional[BaseException]
    ) -> None:
        name = session.server_name
        if self._sessions.get(name) is not session:
            return
        del self._sessions[name]
        self.registry.remove_server(name)
        self._set_status(name, NOT_CONNECTED)
        logger.warning(f"Session for {name} ended unexpectedly: {error or 'process exited'}")

    def _set_status(self, name: str, status: ConnectionStatus) -> None:
        self._status[name] = status
        for listener in list(self._listeners):
            listener(name, status)
