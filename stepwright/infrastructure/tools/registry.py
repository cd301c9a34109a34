"""
Tool Registry

Holds tool instances by name and executes them on behalf of plan steps,
implementing the ``IToolExecutor`` interface the engine depends on.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from stepwright.models.interfaces import BaseTool, IToolExecutor, ToolDescription, ToolResult


logger = logging.getLogger(__name__)


class ToolRegistry(IToolExecutor):
    """Registry of tool instances that also acts as the tool execution service"""

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool, name: Optional[str] = None) -> None:
        """
        Register a tool instance.

        Args:
            tool: Tool implementing BaseTool
            name: Registration name, defaults to ``tool.name`` or the schema name
        """
        if not isinstance(tool, BaseTool):
            raise ValueError(f"{tool!r} must implement BaseTool interface")

        tool_name = name or tool.name or tool.get_schema().get("name")
        if not tool_name:
            raise ValueError(f"{type(tool).__name__} has no name")

        if tool_name in self._tools:
            logger.warning(f"Replacing registered tool: {tool_name}")
        self._tools[tool_name] = tool
        logger.debug(f"Registered tool: {tool_name}")

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get_tool(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def tool_names(self) -> List[str]:
        return list(self._tools.keys())

    def list_tools(self) -> List[ToolDescription]:
        descriptions = []
        for name, tool in self._tools.items():
            description = tool.describe()
            if description.name != name:
                description = description.model_copy(update={"name": name})
            descriptions.append(description)
        return descriptions

    async def execute(self, tool_name: str, arguments: Dict[str, Any]) -> ToolResult:
        tool = self._tools.get(tool_name)
        if tool is None:
            logger.warning(f"Tool not found: {tool_name}")
            return ToolResult.failure(f"Tool '{tool_name}' is not registered")

        try:
            result = await tool.execute(arguments)
        except Exception as e:
            logger.warning(f"Tool '{tool_name}' raised {type(e).__name__}: {e}")
            return ToolResult.failure(str(e) or type(e).__name__)

        if not result.success:
            logger.info(f"Tool '{tool_name}' reported failure: {result.error}")
        return result

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
