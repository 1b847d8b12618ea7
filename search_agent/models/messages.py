"""Message and conversation data models."""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from search_agent.exceptions import InvariantViolation

Role = Literal["system", "user", "assistant", "tool"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ToolCall(BaseModel):
    """A tool invocation requested by the assistant."""

    model_config = ConfigDict(frozen=True)

    id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """A single transcript entry."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_role_fields(self) -> "Message":
        """Tool calls belong to assistant messages, call ids to tool messages."""
        if self.tool_calls and self.role != "assistant":
            raise ValueError(f"Only assistant messages may carry tool calls, got role '{self.role}'")
        if self.tool_call_id is not None and self.role != "tool":
            raise ValueError(f"Only tool messages may carry a tool_call_id, got role '{self.role}'")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")
        return self

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[ToolCall] | None = None) -> "Message":
        return cls(role="assistant", content=content, tool_calls=tuple(tool_calls) if tool_calls else None)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role="tool", content=content, tool_call_id=tool_call_id)


class Conversation(BaseModel):
    """A stored conversation header."""

    id: str
    title: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)


def validate_transcript(messages: Sequence[Message]) -> None:
    """Check that tool calls and tool results pair up the way the provider replays them.

    Every tool message must answer a call of the nearest preceding assistant
    message, and every call must be answered before any other message follows.

    Raises:
        InvariantViolation: If a tool message is orphaned, points at an unknown
            call id or answers the same call twice, or if a call is left
            unanswered.
    """
    answerable: set[str] | None = None
    pending: set[str] = set()

    for index, message in enumerate(messages):
        if message.role != "tool":
            if pending:
                raise InvariantViolation(
                    f"Tool call(s) {sorted(pending)} unanswered before {message.role} message at position {index}",
                    position=index,
                )
            if message.role == "assistant":
                answerable = {call.id for call in message.tool_calls or ()}
                pending = set(answerable)
            continue

        if answerable is None:
            raise InvariantViolation(
                f"Tool message at position {index} has no preceding assistant message",
                position=index,
            )
        if message.tool_call_id not in answerable:
            raise InvariantViolation(
                f"Tool message at position {index} references unknown tool call '{message.tool_call_id}'",
                position=index,
            )
        if message.tool_call_id not in pending:
            raise InvariantViolation(
                f"Tool call '{message.tool_call_id}' answered more than once",
                position=index,
            )
        pending.remove(message.tool_call_id)

    if pending:
        raise InvariantViolation(
            f"Transcript ends with unanswered tool call(s) {sorted(pending)}",
            position=len(messages),
        )
