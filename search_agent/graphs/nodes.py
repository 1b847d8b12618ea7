"""Node implementations for the agent graph."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from langchain_core.runnables import RunnableConfig

from search_agent.graphs.cancellation import get_cancellation
from search_agent.graphs.state import AgentState
from search_agent.models.llm import CompletionClient, ToolSchema
from search_agent.models.messages import Message
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

Node = Callable[[AgentState, RunnableConfig], Awaitable[dict[str, Any]]]


class ToolExecutor(Protocol):
    async def execute(self, name: str, arguments: dict[str, Any]) -> str: ...


def create_agent_node(completion_client: CompletionClient, tool_schemas: list[ToolSchema]) -> Node:
    """Build the node that asks the completion provider for the next step.

    Provider failures are not caught here; they abort the run.
    """

    async def agent_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
        get_cancellation(config).raise_if_cancelled()

        iteration = state.iterations + 1
        logger.debug(f"Agent iteration {iteration}/{state.max_iterations}")

        result = await completion_client.complete(list(state.transcript), tool_schemas, enable_tools=True)
        message = result.message

        if message.has_tool_calls:
            logger.info(f"Model requested {len(message.tool_calls)} tool call(s) in iteration {iteration}")
        else:
            logger.info(f"Model answered in iteration {iteration} ({result.termination_reason})")

        return {
            "transcript": (*state.transcript, message),
            "emitted": (*state.emitted, message),
            "iterations": iteration,
        }

    return agent_node


def create_tools_node(tools: ToolExecutor) -> Node:
    """Build the node that runs the newest assistant message's tool calls in order."""

    async def tools_node(state: AgentState, config: RunnableConfig) -> dict[str, Any]:
        cancellation = get_cancellation(config)
        last = state.last_message
        calls = last.tool_calls if last is not None and last.tool_calls else ()

        produced: list[Message] = []
        for call in calls:
            cancellation.raise_if_cancelled()
            content = await tools.execute(call.tool_name, call.arguments)
            produced.append(Message.tool(content, call.id))

        return {
            "transcript": (*state.transcript, *produced),
            "emitted": (*state.emitted, *produced),
        }

    return tools_node
