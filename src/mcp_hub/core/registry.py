"""
Aggregated tool catalog across all connected servers.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import mcp.types as types

logger = logging.getLogger(__name__)

CatalogListener = Callable[[tuple["ToolDescriptor", ...]], None]


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool's identity and schema as exposed to callers."""

    server_name: str
    name: str
    description: str = "No description available"
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def qualified_name(self) -> str:
        return f"{self.server_name}.{self.name}"

    @classmethod
    def from_tool(cls, server_name: str, tool: types.Tool) -> "ToolDescriptor":
        return cls(
            server_name=server_name,
            name=tool.name,
            description=tool.description or "No description available",
            input_schema=dict(tool.inputSchema or {}),
        )


class ToolRegistry:
    """Catalog of tools from every connected server.

    Servers are kept in the order they connected; the flat catalog is rebuilt
    whenever one server's tool list changes and published to subscribers as
    an immutable tuple.
    """

    def __init__(self) -> None:
        self._by_server: dict[str, list[ToolDescriptor]] = {}
        self._catalog: tuple[ToolDescriptor, ...] = ()
        self._listeners: list[CatalogListener] = []

    @property
    def catalog(self) -> tuple[ToolDescriptor, ...]:
        """Snapshot of all tools, safe to read across awaits."""
        return self._catalog

    def tools_for(self, server_name: str) -> list[ToolDescriptor]:
        return list(self._by_server.get(server_name, []))

    def set_tools(self, server_name: str, tools: list[types.Tool]) -> None:
        """Replace the tool list of one server and rebuild the catalog."""
        self._by_server[server_name] = [
            ToolDescriptor.from_tool(server_name, tool) for tool in tools
        ]
        self._rebuild()

    def remove_server(self, server_name: str) -> None:
        if self._by_server.pop(server_name, None) is not None:
            self._rebuild()

    def clear(self) -> None:
        self._by_server.clear()
        self._rebuild()

    def resolve(self, tool_name: str) -> Optional[ToolDescriptor]:
        """Find the tool a call should go to.

        A plain name matches the first server (in connection order) that
        exposes it. A ``server.tool`` qualified name selects the server
        explicitly.
        """
        catalog = self._catalog
        for descriptor in catalog:
            if descriptor.name == tool_name:
                return descriptor
        for descriptor in catalog:
            if descriptor.qualified_name == tool_name:
                return descriptor
        return None

    def subscribe(self, listener: CatalogListener) -> None:
        self._listeners.append(listener)

    def _rebuild(self) -> None:
        catalog: list[ToolDescriptor] = []
        owners: dict[str, str] = {}
        for server_name, descriptors in self._by_server.items():
            for descriptor in descriptors:
                owner = owners.setdefault(descriptor.name, server_name)
                if owner != server_name:
                    logger.warning(
                        f"Tool '{descriptor.name}' on '{server_name}' is shadowed by "
                        f"'{owner}'; call it as '{descriptor.qualified_name}'"
                    )
                catalog.append(descriptor)

        self._catalog = tuple(catalog)
        for listener in list(self._listeners):
            listener(self._catalog)
