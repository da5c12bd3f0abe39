"""
Server sessions: one live protocol client per connected tool server.

The protocol client (``mcp.ClientSession``) and its transports run inside
anyio task groups, which must be entered and exited by the same task. Each
session therefore runs in a dedicated owner task that opens the transport,
performs the handshake, signals readiness, and then parks until it is asked
to close or the child process exits.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client
import mcp.types as types

from mcp_hub.config.servers import ServerConfig
from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.core.exceptions import ServerConnectionError
from mcp_hub.core.process import ServerProcess, ServerProcessSupervisor, stdio_streams

logger = logging.getLogger(__name__)

ClosedCallback = Callable[["ServerSession", Optional[BaseException]], None]


def _single_cause(error: BaseException) -> BaseException:
    """Unwrap task-group exception groups that hold exactly one error."""
    while len(getattr(error, "exceptions", ())) == 1:
        error = error.exceptions[0]
    return error


class SessionState(Enum):
    """Lifecycle of a ServerSession."""

    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"


class ServerSession:
    """Owns the protocol client for one tool server.

    Args:
        config: The server definition (with any derived auth header merged in).
        supervisor: Process supervisor used for local servers.
        settings: Hub settings.
        on_closed: Called once when the session ends for any reason after
                   it was opened, with the error that ended it if any.
    """

    def __init__(
        self,
        config: ServerConfig,
        supervisor: Optional[ServerProcessSupervisor] = None,
        settings: Optional[HubSettings] = None,
        on_closed: Optional[ClosedCallback] = None,
    ) -> None:
        self.config = config
        self.settings = settings or get_hub_settings()
        self.supervisor = supervisor or ServerProcessSupervisor(settings=self.settings)
        self.on_closed = on_closed

        self.client: Optional[ClientSession] = None
        self.tools: list[types.Tool] = []
        self.state = SessionState.NEW
        self.server_info: Optional[types.Implementation] = None

        self._process: Optional[ServerProcess] = None
        self._ready: Optional[asyncio.Future] = None
        self._closing = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def server_name(self) -> str:
        return self.config.name

    @property
    def is_open(self) -> bool:
        return self.state == SessionState.OPEN

    async def open(self) -> None:
        """Start the owner task and wait for the handshake to complete.

        Cancelling this coroutine cancels the owner task, which tears down
        the transport (and terminates the child process, if any).

        Raises:
            ProcessLaunchError: If the local server cannot be started.
            ServerConnectionError: If the handshake fails.
        """
        if self._task is not None:
            raise RuntimeError(f"Session for {self.server_name} already started")

        self._ready = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(
            self._run(), name=f"mcp-session-{self.server_name}"
        )
        try:
            await asyncio.shield(self._ready)
        except asyncio.CancelledError:
            self._task.cancel()
            raise

    async def list_tools(self) -> list[types.Tool]:
        """Fetch the server's tool list and remember it."""
        result = await self._require_client().list_tools()
        self.tools = list(result.tools)
        return self.tools

    async def call_tool(
        self, name: str, arguments: Optional[dict[str, Any]] = None
    ) -> types.CallToolResult:
        return await self._require_client().call_tool(name, arguments or {})

    async def close(self) -> None:
        """Ask the owner task to exit and wait until the transport is down."""
        self._closing.set()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait for the owner task to finish without re-raising its outcome."""
        if self._task is not None:
            await asyncio.wait([self._task])

    def _require_client(self) -> ClientSession:
        if self.client is None or not self.is_open:
            raise ServerConnectionError(f"Server '{self.server_name}' is not connected")
        return self.client

    @asynccontextmanager
    async def _open_streams(self) -> AsyncIterator[tuple]:
        kind = self.config.transport_kind
        if kind == "stdio":
            self._process = await self.supervisor.launch(self.config)
            async with stdio_streams(self._process) as (read_stream, write_stream):
                yield read_stream, write_stream
        elif kind == "sse":
            async with sse_client(self.config.url, headers=self.config.headers) as (
                read_stream,
                write_stream,
            ):
                yield read_stream, write_stream
        else:
            async with streamablehttp_client(
                self.config.url, headers=self.config.headers
            ) as (read_stream, write_stream, _get_session_id):
                yield read_stream, write_stream

    async def _run(self) -> None:
        error: Optional[BaseException] = None
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await stack.enter_async_context(
                    self._open_streams()
                )
                client = await stack.enter_async_context(
                    ClientSession(
                        read_stream,
                        write_stream,
                        client_info=types.Implementation(
                            name=self.settings.client_name.lower().replace(" ", "-"),
                            version=self.settings.client_version,
                        ),
                    )
                )
                try:
                    init = await client.initialize()
                except Exception as e:
                    raise ServerConnectionError(
                        f"Handshake with '{self.server_name}' failed: {e}"
                    ) from e

                self.client = client
                self.server_info = init.serverInfo
                self.state = SessionState.OPEN
                self._ready.set_result(None)
                logger.info(
                    f"Session open: {self.server_name}",
                    extra={"server_info": init.serverInfo.model_dump()},
                )

                await self._park()
        except Exception as e:
            error = _single_cause(e)
            if not self._ready.done():
                self._ready.set_exception(error)
                return
            logger.warning(f"Session {self.server_name} ended with error: {error}")
        finally:
            was_open = self.state == SessionState.OPEN
            self.state = SessionState.CLOSED
            self.client = None
            if not self._ready.done():
                # Only reachable through cancellation of the owner task
                self._ready.cancel()
            if was_open and self.on_closed is not None:
                self.on_closed(self, error)

    async def _park(self) -> None:
        """Wait until close() is requested or the child process exits."""
        waiters = [asyncio.create_task(self._closing.wait())]
        if self._process is not None:
            waiters.append(asyncio.create_task(self._process.wait()))

        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()

        if not self._closing.is_set():
            logger.warning(
                f"Server process for '{self.server_name}' exited",
                extra={"returncode": self._process.process.returncode},
            )
