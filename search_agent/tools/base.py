"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from pydantic import BaseModel

from search_agent.models.llm import ToolSchema

ToolHandler = Callable[[BaseModel], Awaitable[str]]


class Tool(Protocol):
    """Capability contract: anything with a name, a schema and an execute coroutine."""

    name: str

    def schema(self) -> ToolSchema: ...

    async def execute(self, arguments: dict[str, Any]) -> str: ...


@dataclass
class ToolDefinition:
    """A tool backed by a pydantic input model and an async handler."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        schema = self.input_schema_class.model_json_schema()
        return {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }

    def schema(self) -> ToolSchema:
        return ToolSchema(name=self.name, description=self.description, parameters=self.get_json_schema())

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)

    async def execute(self, arguments: dict[str, Any]) -> str:
        return await self.handler(self.parse_input(arguments))
