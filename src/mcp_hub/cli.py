"""
mcp-hub command line interface.

Usage:
    # List configured servers and their connection status
    mcp-hub --config servers.json servers

    # List every tool the connected servers expose
    mcp-hub --config servers.json tools

    # Call a tool with JSON (or plain text) input
    mcp-hub --config servers.json call search '{"query": "pools"}'

    # Sign in to an OAuth-protected server, or forget its token
    mcp-hub --config servers.json login linear
    mcp-hub --config servers.json logout linear
"""

import argparse
import asyncio
import json
import logging
import threading
from contextlib import suppress
from typing import Any, Optional

from mcp_hub.config.settings import HubSettings, get_hub_settings
from mcp_hub.core.exceptions import ConfigurationError, OAuthError
from mcp_hub.core.hub import MCPHub

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def _start_redirect_reader(hub: MCPHub) -> None:
    """Let the user paste the redirect URL the browser landed on.

    Reads on a daemon thread. A pending prompt must not block exit once
    sign-in finishes some other way.
    """
    loop = asyncio.get_running_loop()

    def deliver(line: str) -> None:
        if line.strip():
            hub.handle_redirect(line.strip())
        else:
            hub.cancel_authentication()

    def read() -> None:
        try:
            line = input("Paste the URL your browser was redirected to (empty to cancel): ")
        except EOFError:
            line = ""
        # The loop is gone if sign-in already finished
        with suppress(RuntimeError):
            loop.call_soon_threadsafe(deliver, line)

    threading.Thread(target=read, name="redirect-reader", daemon=True).start()


async def cmd_servers(hub: MCPHub, args: argparse.Namespace) -> int:
    await hub.start_if_enabled()
    for server in hub.config_store.servers():
        flag = "enabled" if server.enabled else "disabled"
        print(f"{server.name:<24} {server.transport_kind:<6} {flag:<9} {hub.status(server.name)}")
    return 0


async def cmd_tools(hub: MCPHub, args: argparse.Namespace) -> int:
    await hub.start_if_enabled()
    for tool in hub.catalog:
        print(f"{tool.qualified_name}: {tool.description}")
    return 0


async def cmd_call(hub: MCPHub, args: argparse.Namespace) -> int:
    await hub.start_if_enabled()
    result = await hub.execute("", args.tool, args.input)
    print(json.dumps(result, indent=2))
    return 0 if result["status"] == "success" else 1


async def cmd_login(hub: MCPHub, args: argparse.Namespace) -> int:
    _start_redirect_reader(hub)
    try:
        status = await hub.authenticate_server(args.server)
    except OAuthError as e:
        print(e.user_message())
        return 1
    print(f"{args.server}: {status}")
    return 0


async def cmd_logout(hub: MCPHub, args: argparse.Namespace) -> int:
    hub.logout(args.server)
    print(f"Signed out of {args.server}")
    return 0


COMMANDS = {
    "servers": cmd_servers,
    "tools": cmd_tools,
    "call": cmd_call,
    "login": cmd_login,
    "logout": cmd_logout,
}


async def run(settings: HubSettings, args: argparse.Namespace) -> int:
    hub = MCPHub.from_settings(settings)
    try:
        return await COMMANDS[args.command](hub, args)
    finally:
        await hub.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mcp-hub", description="MCP tool server hub")
    parser.add_argument("--config", "-c", help="JSON file with an 'mcpServers' mapping")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("servers", help="List servers and connection status")
    subparsers.add_parser("tools", help="List available tools")

    call = subparsers.add_parser("call", help="Call a tool")
    call.add_argument("tool", help="Tool name or server.tool")
    call.add_argument("input", nargs="?", default=None, help="JSON object or plain text")

    login = subparsers.add_parser("login", help="Sign in to an OAuth-protected server")
    login.add_argument("server")

    logout = subparsers.add_parser("logout", help="Forget a server's stored token")
    logout.add_argument("server")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point with argument parsing."""
    args = build_parser().parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.debug:
        overrides["debug"] = True
    if args.config:
        overrides["servers_file"] = args.config

    base_settings = get_hub_settings()
    settings = base_settings.model_copy(update=overrides) if overrides else base_settings
    if settings.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return asyncio.run(run(settings, args))
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
