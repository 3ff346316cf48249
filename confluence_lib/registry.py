from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

from mcp import types

_NO_DEFAULT = object()

FIELD_TYPES = ("string", "number", "boolean")


@dataclass(frozen=True)
class ToolField:
    name: str
    type: str
    description: str
    required: bool = False
    default: Any = _NO_DEFAULT

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValueError(f"Unsupported field type '{self.type}' for {self.name}")

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT

    def accepts(self, value: Any) -> bool:
        if self.type == "string":
            return isinstance(value, str)
        if self.type == "boolean":
            return isinstance(value, bool)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return isinstance(value, int) or math.isfinite(value)

    def to_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if self.has_default:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    fields: Sequence[ToolField] = ()

    @property
    def required(self) -> list[str]:
        return [item.name for item in self.fields if item.required]

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {item.name: item.to_schema() for item in self.fields},
            "required": self.required,
        }

    def to_tool(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema)


TOOLS: tuple[ToolDescriptor, ...] = (
    ToolDescriptor(
        name="get_page",
        description="Fetch a Confluence page's content and, optionally, its comments by page ID.",
        fields=(
            ToolField("pageId", "string", "ID of the Confluence page", required=True),
            ToolField("includeComments", "boolean", "Whether to include the page comments", default=True),
        ),
    ),
    ToolDescriptor(
        name="get_child_pages",
        description="List the child pages of a Confluence page.",
        fields=(
            ToolField("pageId", "string", "ID of the parent page", required=True),
            ToolField("limit", "number", "Maximum number of results (at most 200)", default=50),
            ToolField("start", "number", "Offset of the first result", default=0),
        ),
    ),
    ToolDescriptor(
        name="create_page",
        description="Create a new Confluence page.",
        fields=(
            ToolField("spaceKey", "string", "Key of the space to create the page in", required=True),
            ToolField("title", "string", "Page title", required=True),
            ToolField("content", "string", "Page body in Confluence storage format", required=True),
            ToolField("parentId", "string", "ID of the parent page (optional)"),
        ),
    ),
    ToolDescriptor(
        name="create_comment",
        description="Add a comment to a Confluence page.",
        fields=(
            ToolField("pageId", "string", "ID of the page to comment on", required=True),
            ToolField("comment", "string", "Comment body in Confluence storage format", required=True),
        ),
    ),
    ToolDescriptor(
        name="search_pages",
        description="Search Confluence pages by keyword.",
        fields=(
            ToolField("query", "string", "Search keywords", required=True),
            ToolField("spaceKey", "string", "Restrict the search to this space (optional)"),
            ToolField("limit", "number", "Maximum number of results (at most 100)", default=20),
            ToolField("start", "number", "Offset of the first result", default=0),
        ),
    ),
)

_BY_NAME = {tool.name: tool for tool in TOOLS}


def list_tools() -> tuple[ToolDescriptor, ...]:
    return TOOLS


def get_tool(name: str) -> ToolDescriptor | None:
    return _BY_NAME.get(name)
