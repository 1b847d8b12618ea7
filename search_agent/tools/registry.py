"""Tools registry for managing assistant tools."""

from typing import Any

from pydantic import ValidationError

from search_agent.clients.tavily import TavilyClient, get_tavily_client
from search_agent.models.llm import ToolSchema
from search_agent.tools.base import Tool
from search_agent.tools.web_search import create_web_search_tool
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)


class ToolsRegistry:
    """Name-keyed lookup table of tools.

    ``execute`` never raises: unknown names, invalid arguments and handler
    failures all come back as descriptive text for the model to read.
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register_tool(tool)

    def register_tool(self, tool: Tool) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            logger.warning(f"Replacing already registered tool: {tool.name}")
        self._tools[tool.name] = tool

    def get_tool_schemas(self) -> list[ToolSchema]:
        """Schemas of all registered tools, in registration order."""
        return [tool.schema() for tool in self._tools.values()]

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    async def execute(self, name: str, arguments: dict[str, Any]) -> str:
        """Run a tool by name and return its text result."""
        tool = self._tools.get(name)
        if tool is None:
            logger.error(f"Unknown tool requested: {name}")
            return f"Unknown tool: {name}"

        logger.debug(f"Executing tool: {name} with input: {arguments}")
        try:
            result = str(await tool.execute(arguments))
        except ValidationError as e:
            logger.warning(f"Invalid arguments for tool {name}: {e}")
            return f"Invalid arguments for {name}: {e.errors(include_url=False)}"
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            return f"Error executing {name}: {e}"

        logger.debug(f"Tool {name} succeeded: {result[:100]}...")
        return result


def create_default_registry(search_client: TavilyClient | None = None) -> ToolsRegistry:
    """Registry holding the default tool set (web search)."""
    return ToolsRegistry([create_web_search_tool(search_client or get_tavily_client())])


_tools_registry: ToolsRegistry | None = None


def get_tools_registry() -> ToolsRegistry:
    """Get or create tools registry instance."""
    global _tools_registry
    if _tools_registry is None:
        _tools_registry = create_default_registry()
    return _tools_registry
