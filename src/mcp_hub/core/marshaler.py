"""
Tool invocation: argument conversion, server resolution and result conversion.

Host-side arguments arrive loosely typed (a JSON string, plain text, or a
mapping that may carry images, documents or audio); tool results come back as
protocol content blocks. This module converts both ways and never lets one
failed call raise into the caller: every outcome is a result mapping
``{"id", "status", "content"}``.
"""

import base64
import binascii
import json
import logging
import struct
import uuid
from typing import Annotated, Any, Callable, Literal, Mapping, Optional, Union

import mcp.types as types
from pydantic import BaseModel, Field

from mcp_hub.core.coordinator import ConnectionCoordinator
from mcp_hub.core.exceptions import ToolExecutionError

logger = logging.getLogger(__name__)

MULTIMODAL_KEYS = ("images", "documents", "audio", "content", "attachments")

EMPTY_RESULT_TEXT = "Tool execution completed with no output"


# =============================================================================
# Result content (closed tagged union)
# =============================================================================


class TextItem(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageItem(BaseModel):
    type: Literal["image"] = "image"
    data: str
    mimeType: str
    description: Optional[str] = None


class AudioItem(BaseModel):
    type: Literal["audio"] = "audio"
    data: str
    mimeType: str
    description: Optional[str] = None


class ResourceItem(BaseModel):
    type: Literal["resource"] = "resource"
    uri: str
    mimeType: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None
    data: Optional[str] = None
    description: Optional[str] = None


ContentItem = Annotated[
    Union[TextItem, ImageItem, AudioItem, ResourceItem], Field(discriminator="type")
]


class ToolResult(BaseModel):
    """Outcome of one tool call as handed back to the host."""

    id: str
    status: Literal["success", "error"]
    content: list[ContentItem]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


# =============================================================================
# Argument conversion
# =============================================================================


def to_protocol_value(value: Any) -> Any:
    """Convert a host value into the protocol's JSON value model.

    Strings, integers, floats, booleans, None, sequences and mappings map to
    their JSON counterparts; any other leaf is coerced to its string form.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): to_protocol_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_protocol_value(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def _encode_data(data: Any) -> str:
    if isinstance(data, (bytes, bytearray)):
        return base64.b64encode(bytes(data)).decode("ascii")
    return "" if data is None else str(data)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _media_block(kind: str, item: Any, default_mime: str) -> dict[str, Any]:
    if not isinstance(item, Mapping):
        item = {"data": item}

    block: dict[str, Any] = {
        "type": kind,
        "data": _encode_data(item.get("data")),
        "mimeType": str(item.get("mimeType") or item.get("mime_type") or default_mime),
    }
    if item.get("metadata") is not None:
        block["metadata"] = to_protocol_value(item["metadata"])
    if item.get("name") is not None:
        block["name"] = str(item["name"])
    return block


def _attachment_block(item: Any) -> dict[str, Any]:
    mime = ""
    if isinstance(item, Mapping):
        mime = str(item.get("mimeType") or item.get("mime_type") or "")
    if mime.startswith("image/"):
        return _media_block("image", item, "image/png")
    if mime.startswith("audio/"):
        return _media_block("audio", item, "audio/wav")
    return _media_block("document", item, "application/octet-stream")


def _content_block(item: Any) -> dict[str, Any]:
    if isinstance(item, Mapping) and "type" in item:
        return to_protocol_value(item)
    return {"type": "text", "text": str(item)}


def build_multimodal_arguments(arguments: Mapping[str, Any]) -> dict[str, Any]:
    """Fold text and media keys into one ``content`` array of typed blocks.

    Keys other than ``text`` and the media keys pass through unchanged.
    """
    content: list[dict[str, Any]] = []
    if arguments.get("text") is not None:
        content.append({"type": "text", "text": str(arguments["text"])})

    content.extend(_content_block(item) for item in _as_list(arguments.get("content")))
    content.extend(
        _media_block("image", item, "image/png")
        for item in _as_list(arguments.get("images"))
    )
    content.extend(
        _media_block("document", item, "application/octet-stream")
        for item in _as_list(arguments.get("documents"))
    )
    content.extend(
        _media_block("audio", item, "audio/wav")
        for item in _as_list(arguments.get("audio"))
    )
    content.extend(_attachment_block(item) for item in _as_list(arguments.get("attachments")))

    converted = {
        str(key): to_protocol_value(value)
        for key, value in arguments.items()
        if key not in MULTIMODAL_KEYS and key != "text"
    }
    converted["content"] = content
    return converted


def convert_arguments(tool_input: Any) -> dict[str, Any]:
    """Turn host-side tool input into protocol call arguments.

    Priority:
    1. A string holding a JSON object becomes the named arguments; any other
       string becomes ``{"text": input}``.
    2. A mapping with any multi-modal key becomes a ``content`` array.
    3. Any other mapping is converted value by value.

    Raises:
        ToolExecutionError: If the input cannot be converted.
    """
    try:
        return _convert_arguments(tool_input)
    except (AttributeError, TypeError, ValueError) as e:
        raise ToolExecutionError(f"Invalid tool arguments: {e}") from e


def _convert_arguments(tool_input: Any) -> dict[str, Any]:
    if tool_input is None:
        return {}

    if isinstance(tool_input, (str, bytes)):
        text = tool_input.decode("utf-8", errors="replace") if isinstance(tool_input, bytes) else tool_input
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict):
            return {"text": text}
        tool_input = parsed

    if not isinstance(tool_input, Mapping):
        return {"text": str(tool_input)}

    if any(key in tool_input for key in MULTIMODAL_KEYS):
        return build_multimodal_arguments(tool_input)

    return {str(key): to_protocol_value(value) for key, value in tool_input.items()}


# =============================================================================
# Result conversion
# =============================================================================


def image_dimensions(data: bytes) -> Optional[tuple[int, int]]:
    """Read (width, height) from a PNG, GIF or JPEG header."""
    if data[:8] == b"\x89PNG\r\n\x1a\n" and len(data) >= 24:
        return struct.unpack(">II", data[16:24])
    if data[:6] in (b"GIF87a", b"GIF89a") and len(data) >= 10:
        return struct.unpack("<HH", data[6:10])
    if data[:2] == b"\xff\xd8":
        offset = 2
        while offset + 9 < len(data):
            if data[offset] != 0xFF:
                return None
            marker = data[offset + 1]
            length = struct.unpack(">H", data[offset + 2 : offset + 4])[0]
            # SOF0..SOF15 except DHT (C4), JPG (C8) and DAC (CC)
            if 0xC0 <= marker <= 0xCF and marker not in (0xC4, 0xC8, 0xCC):
                height, width = struct.unpack(">HH", data[offset + 5 : offset + 9])
                return width, height
            offset += 2 + length
    return None


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=False)
    except (binascii.Error, ValueError):
        return b""


def _size_label(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} bytes"


def describe_image(data: str, mime_type: str, meta: Optional[Mapping[str, Any]] = None) -> str:
    raw = _decode(data)
    label = mime_type.split("/")[-1].upper()
    dimensions = image_dimensions(raw)
    if dimensions is None and meta and meta.get("width") and meta.get("height"):
        dimensions = (meta["width"], meta["height"])
    if dimensions is not None:
        return f"Image ({label}, {dimensions[0]}x{dimensions[1]} pixels)"
    return f"Image ({label}, {_size_label(len(raw))})"


def describe_audio(data: str, mime_type: str, meta: Optional[Mapping[str, Any]] = None) -> str:
    size = _size_label(len(_decode(data)))
    if meta and meta.get("duration"):
        return f"Audio ({mime_type}, {meta['duration']}s, {size})"
    return f"Audio ({mime_type}, {size})"


def _text_item(block: types.TextContent) -> ContentItem:
    return TextItem(text=block.text)


def _image_item(block: types.ImageContent) -> ContentItem:
    data = _encode_data(block.data)
    return ImageItem(
        data=data,
        mimeType=block.mimeType,
        description=describe_image(data, block.mimeType, getattr(block, "meta", None)),
    )


def _audio_item(block: types.AudioContent) -> ContentItem:
    data = _encode_data(block.data)
    return AudioItem(
        data=data,
        mimeType=block.mimeType,
        description=describe_audio(data, block.mimeType, getattr(block, "meta", None)),
    )


def _resource_item(block: types.EmbeddedResource) -> ContentItem:
    resource = block.resource
    if isinstance(resource, types.TextResourceContents):
        return ResourceItem(uri=str(resource.uri), mimeType=resource.mimeType, text=resource.text)
    return ResourceItem(
        uri=str(resource.uri),
        mimeType=resource.mimeType,
        data=resource.blob,
        description=f"Resource ({resource.mimeType or 'binary'}, {_size_label(len(_decode(resource.blob)))})",
    )


def _resource_link_item(block: types.ResourceLink) -> ContentItem:
    return ResourceItem(
        uri=str(block.uri),
        mimeType=block.mimeType,
        name=block.name,
        description=block.description,
    )


CONTENT_CONVERTERS: dict[str, Callable[[Any], ContentItem]] = {
    "text": _text_item,
    "image": _image_item,
    "audio": _audio_item,
    "resource": _resource_item,
    "resource_link": _resource_link_item,
}


def convert_result(result: types.CallToolResult) -> list[ContentItem]:
    """Flatten protocol content blocks into host content items."""
    items: list[ContentItem] = []
    for block in result.content:
        converter = CONTENT_CONVERTERS.get(block.type)
        if converter is None:
            logger.warning(f"Skipping unsupported content block type: {block.type}")
            continue
        items.append(converter(block))

    if not items and result.structuredContent:
        items.append(TextItem(text=json.dumps(result.structuredContent, indent=2)))
    if not items:
        items.append(TextItem(text=EMPTY_RESULT_TEXT))
    return items


# =============================================================================
# Execution
# =============================================================================


class ToolInvocationMarshaler:
    """Resolves a tool to its session, converts arguments, calls, converts results.

    Args:
        coordinator: Source of live sessions and the tool catalog.
    """

    def __init__(self, coordinator: ConnectionCoordinator) -> None:
        self.coordinator = coordinator

    async def execute(self, tool_id: str, tool_name: str, tool_input: Any = None) -> dict[str, Any]:
        """Run a tool and return ``{"id", "status", "content"}``.

        Never raises for a missing tool or a failing call; both come back
        as ``status: "error"`` results.
        """
        tool_id = tool_id or f"tool_{uuid.uuid4()}"

        # Snapshot; a concurrent disconnect cannot change what this call sees
        sessions = self.coordinator.sessions
        descriptor = self.coordinator.registry.resolve(tool_name)
        session = sessions.get(descriptor.server_name) if descriptor else None

        if session is None:
            logger.warning(f"Tool '{tool_name}' not found in any connected server")
            return self._error(tool_id, f"Tool '{tool_name}' not found in any connected server")

        try:
            arguments = convert_arguments(tool_input)
        except ToolExecutionError as e:
            logger.warning(f"Rejected input for tool '{descriptor.qualified_name}': {e}")
            return self._error(tool_id, str(e))

        logger.debug(f"Executing tool '{descriptor.name}' on server '{descriptor.server_name}'")
        try:
            result = await session.call_tool(descriptor.name, arguments)
        except Exception as e:
            logger.error(f"Tool execution error ({descriptor.qualified_name}): {e}")
            return self._error(tool_id, f"Error executing tool:\n{e}")

        return ToolResult(
            id=tool_id,
            status="error" if result.isError else "success",
            content=convert_result(result),
        ).to_dict()

    @staticmethod
    def _error(tool_id: str, message: str) -> dict[str, Any]:
        return ToolResult(id=tool_id, status="error", content=[TextItem(text=message)]).to_dict()
