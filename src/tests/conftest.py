"""
Test configuration for MCP hub tests.

Provides shared fixtures for:
- Settings isolation (no .env, no real home directory state)
- In-memory settings and token stores
- Mock aiohttp sessions and canned HTTP responses
- Fake server sessions for coordinator tests
"""

import asyncio
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src to path so mcp_hub imports without installation
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

import mcp.types as types  # noqa: E402

from mcp_hub.auth.http import HttpResponse  # noqa: E402
from mcp_hub.auth.store import TokenStore  # noqa: E402
from mcp_hub.config.servers import ServerConfig, ServerConfigStore  # noqa: E402
from mcp_hub.config.settings import HubSettings, reset_settings  # noqa: E402
from mcp_hub.config.storage import MemorySettingsStore  # noqa: E402
from mcp_hub.core.exceptions import ServerConnectionError  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# =============================================================================
# Auto-use fixtures for environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def prevent_dotenv_loading(monkeypatch, tmp_path):
    """Keep Pydantic settings away from the developer's .env and MCP_HUB_* vars."""
    for var in list(os.environ):
        if var.startswith("MCP_HUB_"):
            monkeypatch.delenv(var, raising=False)

    original_cwd = os.getcwd()
    (tmp_path / ".env").write_text("")
    os.chdir(tmp_path)
    reset_settings()

    yield

    os.chdir(original_cwd)
    reset_settings()


@pytest.fixture
def settings(tmp_path) -> HubSettings:
    """Settings with short timeouts and a temporary settings file."""
    return HubSettings(
        settings_file=tmp_path / "settings.json",
        connect_timeout=2.0,
        discovery_timeout=1.0,
        http_timeout=1.0,
    )


# =============================================================================
# Store fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> MemorySettingsStore:
    return MemorySettingsStore()


@pytest.fixture
def token_store(memory_store) -> TokenStore:
    return TokenStore(memory_store)


@pytest.fixture
def remote_config() -> ServerConfig:
    return ServerConfig(name="linear", url="https://mcp.example.com/linear/mcp")


@pytest.fixture
def local_config() -> ServerConfig:
    return ServerConfig(name="docs", command="docs-server", args=["--stdio"])


@pytest.fixture
def config_store(local_config) -> ServerConfigStore:
    return ServerConfigStore([local_config])


# =============================================================================
# Mock HTTP helpers
# =============================================================================


def json_response(status: int, body: Any) -> HttpResponse:
    """Build a parsed HttpResponse as returned by mcp_hub.auth.http."""
    import json

    return HttpResponse(status=status, body=body, text=json.dumps(body))


def create_mock_session(mock_response, captured: Optional[dict] = None):
    """Create a properly mocked aiohttp.ClientSession with async context managers."""

    @asynccontextmanager
    async def mock_request(url, **kwargs):
        if captured is not None:
            captured["url"] = url
            captured.update(kwargs)
        yield mock_response

    mock_session = MagicMock()
    mock_session.get = mock_request
    mock_session.post = mock_request

    mock_client = MagicMock()
    mock_client.return_value.__aenter__ = AsyncMock(return_value=mock_session)
    mock_client.return_value.__aexit__ = AsyncMock(return_value=None)
    return mock_client


def create_mock_response(status: int, text: str):
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=text)
    return mock_response


# =============================================================================
# Fake sessions for coordinator tests
# =============================================================================


class FakeSession:
    """Stands in for ServerSession without any process or transport.

    Args:
        config: Server definition.
        on_closed: Coordinator callback fired by ``simulate_exit``.
        tools: Tools returned by list_tools.
        open_delay: Seconds the handshake takes.
        open_error: Exception raised by the handshake.
        tools_error: Exception raised by list_tools.
    """

    def __init__(
        self,
        config: ServerConfig,
        on_closed=None,
        tools: Optional[list[types.Tool]] = None,
        open_delay: float = 0.0,
        open_error: Optional[BaseException] = None,
        tools_error: Optional[BaseException] = None,
    ) -> None:
        self.config = config
        self.on_closed = on_closed
        self.tools = tools or []
        self.open_delay = open_delay
        self.open_error = open_error
        self.tools_error = tools_error
        self.is_open = False
        self.closed = False
        self.open_calls = 0
        self.calls: list[tuple[str, dict]] = []
        self.call_result: Any = types.CallToolResult(
            content=[types.TextContent(type="text", text="ok")]
        )

    @property
    def server_name(self) -> str:
        return self.config.name

    async def open(self) -> None:
        self.open_calls += 1
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.open_error is not None:
            raise self.open_error
        self.is_open = True

    async def list_tools(self) -> list[types.Tool]:
        if self.tools_error is not None:
            raise self.tools_error
        return self.tools

    async def call_tool(self, name: str, arguments: Optional[dict] = None):
        if not self.is_open:
            raise ServerConnectionError(f"Server '{self.server_name}' is not connected")
        self.calls.append((name, arguments or {}))
        if isinstance(self.call_result, BaseException):
            raise self.call_result
        return self.call_result

    async def close(self) -> None:
        self.is_open = False
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def simulate_exit(self, error: Optional[BaseException] = None) -> None:
        self.is_open = False
        if self.on_closed is not None:
            self.on_closed(self, error)


def make_tool(name: str, description: Optional[str] = None) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={"type": "object", "properties": {"query": {"type": "string"}}},
    )


@pytest.fixture
def fake_sessions():
    """Factory fixture building FakeSession instances with per-server options.

    Usage:
        factory, created = fake_sessions({"docs": {"tools": [make_tool("search")]}})
        coordinator = ConnectionCoordinator(store, session_factory=factory)
    """

    def _build(options: Optional[dict[str, dict]] = None):
        options = options or {}
        created: dict[str, list[FakeSession]] = {}

        def factory(config: ServerConfig, on_closed):
            session = FakeSession(config, on_closed, **options.get(config.name, {}))
            created.setdefault(config.name, []).append(session)
            return session

        return factory, created

    return _build
