"""
MCP Hub - one pool of tools across local and remote MCP servers.

Launches local tool servers under the user's login shell, connects to
remote ones (signing in with OAuth where required), and exposes every tool
they offer through a single ``execute`` call.
"""

from mcp_hub.core.hub import MCPHub

__version__ = "0.1.0"

__all__ = ["MCPHub", "__version__"]
