"""
Process supervision for local tool servers.

The supervisor launches a tool server through the user's login shell and
owns the child process and its three pipes until a session wraps them.
``stdio_streams`` adapts those pipes to the message streams the protocol
client expects: one JSON-RPC message per line on stdout/stdin, with stderr
drained into the log.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import AsyncIterator, Optional

import anyio
import mcp.types as types
from mcp.shared.message import SessionMessage
from pydantic import ValidationError

from mcp_hub.config.servers import ServerConfig
from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.core.exceptions import ProcessLaunchError
from mcp_hub.core.shell import ShellEnvironmentResolver

logger = logging.getLogger(__name__)

# asyncio's default 64 KiB line limit is too small for large tool listings
STREAM_LIMIT = 16 * 1024 * 1024

TERMINATE_GRACE_SECONDS = 5.0


class ServerProcess:
    """A running tool server child process and its pipes."""

    def __init__(self, server_name: str, process: asyncio.subprocess.Process) -> None:
        self.server_name = server_name
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def stdin(self) -> asyncio.StreamWriter:
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader:
        return self.process.stderr

    def is_alive(self) -> bool:
        """Check if the child is still running."""
        return self.process.returncode is None

    async def wait(self) -> int:
        return await self.process.wait()

    async def terminate(self, timeout: float = TERMINATE_GRACE_SECONDS) -> None:
        """Close stdin, then terminate, then kill if the child ignores SIGTERM."""
        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()

        if not self.is_alive():
            return

        with suppress(ProcessLookupError):
            self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Server '{self.server_name}' ignored SIGTERM, killing")
            with suppress(ProcessLookupError):
                self.process.kill()
            await self.process.wait()

        logger.info(
            f"Server process stopped: {self.server_name}",
            extra={"pid": self.pid, "returncode": self.process.returncode},
        )


class ServerProcessSupervisor:
    """Launches local tool servers through the user's login shell.

    Args:
        resolver: Shell resolver (defaults to one reading ``os.environ``).
        settings: Hub settings (defaults to the global settings).
    """

    def __init__(
        self,
        resolver: Optional[ShellEnvironmentResolver] = None,
        settings: Optional[HubSettings] = None,
    ) -> None:
        self.resolver = resolver or ShellEnvironmentResolver()
        self.settings = settings or get_hub_settings()

    def build_environment(self, config: ServerConfig) -> dict[str, str]:
        """Current environment plus HOME, extended PATH and the server's variables.

        ``$HOME`` inside server-declared values is replaced with the real
        home directory.
        """
        home = str(Path.home())
        env = dict(os.environ)
        env["HOME"] = home

        path_entries = [p for p in self.settings.extra_path_dirs if p]
        if env.get("PATH"):
            path_entries.append(env["PATH"])
        env["PATH"] = os.pathsep.join(path_entries)

        for key, value in config.env.items():
            env[key] = value.replace("$HOME", home)
        return env

    async def launch(self, config: ServerConfig) -> ServerProcess:
        """Start the server process for config.

        Args:
            config: A local (stdio) server definition.

        Returns:
            The running process with stdin/stdout/stderr pipes.

        Raises:
            ProcessLaunchError: If the shell or command cannot be started.
        """
        config.validate_target()

        home = str(Path.home())
        shell = self.resolver.resolve_shell()
        args = [arg.replace("$HOME", home) for arg in config.args]
        command_line = self.resolver.build_command(
            config.command, args, config.cwd, shell=shell
        )
        argv = self.resolver.login_argv(command_line, shell=shell)

        logger.info(
            f"Starting server process: {config.name}",
            extra={"shell": shell, "command": command_line},
        )
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_environment(config),
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start process for {config.name}: {e}")
            raise ProcessLaunchError(f"Failed to start process: {e}") from e

        return ServerProcess(config.name, process)


# =============================================================================
# Newline-framed stdio streams
# =============================================================================


async def _pump_stdout(server: ServerProcess, read_send) -> None:
    async with read_send:
        while True:
            try:
                line = await server.stdout.readline()
            except ValueError as e:
                # Line exceeded STREAM_LIMIT; the framing is lost for good
                await read_send.send(e)
                break
            if not line:
                break

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue
            try:
                message = types.JSONRPCMessage.model_validate_json(text)
            except ValidationError:
                logger.debug(f"[{server.server_name}] non-protocol output: {text[:200]}")
                continue
            await read_send.send(SessionMessage(message))


async def _pump_stdin(server: ServerProcess, write_receive) -> None:
    async with write_receive:
        async for session_message in write_receive:
            payload = session_message.message.model_dump_json(
                by_alias=True, exclude_none=True
            )
            server.stdin.write((payload + "\n").encode("utf-8"))
            await server.stdin.drain()


async def _drain_stderr(server: ServerProcess) -> None:
    while True:
        line = await server.stderr.readline()
        if not line:
            break
        logger.debug(f"[{server.server_name}] {line.decode('utf-8', errors='replace').rstrip()}")


@asynccontextmanager
async def stdio_streams(server: ServerProcess) -> AsyncIterator[tuple]:
    """Expose a server process as (read_stream, write_stream) for ClientSession.

    Partial reads are reassembled into lines; blank and non-JSON lines are
    skipped. The process is terminated when the context exits.
    """
    read_send, read_receive = anyio.create_memory_object_stream(0)
    write_send, write_receive = anyio.create_memory_object_stream(0)

    tasks = [
        asyncio.create_task(_pump_stdout(server, read_send)),
        asyncio.create_task(_pump_stdin(server, write_receive)),
        asyncio.create_task(_drain_stderr(server)),
    ]
    try:
        yield read_receive, write_send
    finally:
        await server.terminate()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError, Exception):
                await task
        await read_receive.aclose()
        await write_send.aclose()
