"""LLM-related data models and types (provider-agnostic)."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from search_agent.models.messages import Message


class TerminationReason(StrEnum):
    """Why the provider stopped generating."""

    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    OTHER = "other"


class ToolSchema(BaseModel):
    """JSON-Schema function descriptor passed verbatim to the provider."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}, "required": []})


@dataclass
class LLMUsage:
    """Token usage information from the LLM provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResult:
    """Normalized reply from one completion exchange."""

    message: Message
    termination_reason: TerminationReason
    usage: LLMUsage | None = None
    model: str | None = None


class CompletionClient(Protocol):
    """Anything that can turn a transcript into the next assistant message."""

    async def complete(
        self,
        transcript: list[Message],
        tool_schema: list[ToolSchema],
        enable_tools: bool = True,
    ) -> CompletionResult: ...
