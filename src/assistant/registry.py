"""Tool registry for the assistant.

Holds the catalogue, filters it per caller and validates arguments.
"""

import json
from typing import Any, Iterable, Optional

from shared.logging import get_logger
from shared.models import ToolDefinition, UserContext
from shared.schema import normalize_arguments, validate_schema
from assistant.auth import authorize_request
from assistant.catalogue import TOOL_DEFINITIONS

logger = get_logger(__name__)


class ToolRegistry:
    """Central registry for assistant tools."""

    def __init__(self, tools: Optional[Iterable[ToolDefinition]] = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        if tools is not None:
            self.register_many(tools)

    @classmethod
    def default(cls) -> "ToolRegistry":
        return cls(TOOL_DEFINITIONS)

    def register(self, tool: ToolDefinition) -> None:
        """
        Register a tool in the registry.

        Raises:
            ValueError: If tool name is already registered
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.debug(
            "Tool registered",
            tool=tool.name,
            access=tool.access.value,
            category=tool.category.value
        )

    def register_many(self, tools: Iterable[ToolDefinition]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, tool_name: str) -> Optional[ToolDefinition]:
        return self._tools.get(tool_name)

    def list_tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    def tools_for_user(self, user: UserContext) -> list[ToolDefinition]:
        """Tools the caller may see. Execution re-checks access independently."""
        return [tool for tool in self._tools.values() if authorize_request(tool, user)[0]]

    def normalize_input(self, tool: ToolDefinition, arguments: dict[str, Any]) -> dict[str, Any]:
        return normalize_arguments(arguments, tool.parameters)

    def validate_input(
        self,
        tool_name: str,
        arguments: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Validate arguments against the tool's parameter schema.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        tool = self.get(tool_name)
        if not tool:
            return False, [f"Tool '{tool_name}' not found"]

        return validate_schema(arguments, tool.parameters)

    def describe_for_prompt(self, user: UserContext) -> str:
        """Render the caller's catalogue for the system prompt."""
        blocks = []
        for tool in self.tools_for_user(user):
            kind = " (action, requires user approval)" if tool.is_action else ""
            blocks.append(
                f"- {tool.name}{kind}: {tool.description}\n"
                f"  parameters: {json.dumps(tool.parameters.get('properties', {}))}"
            )
        return "\n".join(blocks)
