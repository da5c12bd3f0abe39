"""
Tests for process supervision and the newline-framed stdio bridge.

These launch real child processes through /bin/sh.
"""

import sys
from pathlib import Path

import anyio
import mcp.types as types
import pytest
from mcp.shared.message import SessionMessage

from mcp_hub.config.servers import ServerConfig
from mcp_hub.core.exceptions import ConfigurationError, ProcessLaunchError
from mcp_hub.core.process import ServerProcessSupervisor, stdio_streams
from mcp_hub.core.shell import ShellEnvironmentResolver

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX shell")


@pytest.fixture
def supervisor(settings):
    return ServerProcessSupervisor(
        resolver=ShellEnvironmentResolver(environ={"SHELL": "/bin/sh"}),
        settings=settings,
    )


def _ping(request_id: int) -> SessionMessage:
    return SessionMessage(
        types.JSONRPCMessage(types.JSONRPCRequest(jsonrpc="2.0", id=request_id, method="ping"))
    )


class TestBuildEnvironment:
    def test_path_extended_and_home_substituted(self, supervisor, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/bin")
        config = ServerConfig(name="x", command="x", env={"DATA_DIR": "$HOME/data"})

        env = supervisor.build_environment(config)

        assert env["PATH"].split(":") == ["/usr/local/bin", "/opt/homebrew/bin", "/usr/bin"]
        assert env["HOME"] == str(Path.home())
        assert env["DATA_DIR"] == f"{Path.home()}/data"


class TestLaunch:
    @pytest.mark.asyncio
    async def test_messages_round_trip_through_cat(self, supervisor):
        config = ServerConfig(name="echo", command="sh", args=["-c", "echo welcome banner; exec cat"])
        process = await supervisor.launch(config)

        async with stdio_streams(process) as (read_stream, write_stream):
            await write_stream.send(_ping(1))
            with anyio.fail_after(5):
                received = await read_stream.receive()

        # The banner line is not JSON and never reaches the protocol stream
        assert isinstance(received, SessionMessage)
        assert received.message.root.method == "ping"
        assert received.message.root.id == 1
        assert not process.is_alive()

    @pytest.mark.asyncio
    async def test_cwd_and_home_substitution(self, supervisor, tmp_path):
        config = ServerConfig(
            name="pwd",
            command="sh",
            args=["-c", 'printf \'{"jsonrpc":"2.0","id":1,"result":{"cwd":"%s"}}\\n\' "$(pwd)"; exec cat'],
            cwd=str(tmp_path),
        )
        process = await supervisor.launch(config)

        async with stdio_streams(process) as (read_stream, _write_stream):
            with anyio.fail_after(5):
                received = await read_stream.receive()

        assert received.message.root.result["cwd"] in {str(tmp_path), str(tmp_path.resolve())}

    @pytest.mark.asyncio
    async def test_missing_command_rejected(self, supervisor):
        with pytest.raises(ConfigurationError):
            await supervisor.launch(ServerConfig(name="nothing"))

    @pytest.mark.asyncio
    async def test_missing_shell_is_launch_error(self, settings):
        supervisor = ServerProcessSupervisor(
            resolver=ShellEnvironmentResolver(environ={"SHELL": "/nonexistent/shell"}),
            settings=settings,
        )
        with pytest.raises(ProcessLaunchError):
            await supervisor.launch(ServerConfig(name="x", command="true"))
