"""Tool-calling agent graph and its orchestrator."""

from collections.abc import Sequence
from typing import Any

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from search_agent.exceptions import TransportError
from search_agent.graphs.cancellation import CancellationToken
from search_agent.graphs.edges import route_agent_output, route_tool_output
from search_agent.graphs.nodes import ToolExecutor, create_agent_node, create_tools_node
from search_agent.graphs.state import MAX_ITERATIONS, AgentState
from search_agent.models.llm import CompletionClient, ToolSchema
from search_agent.models.messages import Message
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful AI assistant with access to web search.
When a question needs current information, use the web_search tool to find accurate, up-to-date answers.
Cite your sources when you use information from search results.
Keep responses concise but thorough."""


def create_agent_graph(
    completion_client: CompletionClient,
    tools: ToolExecutor,
    tool_schemas: list[ToolSchema],
) -> CompiledStateGraph:
    """Create the agent graph.

    agent -> (tool calls?) -> tools -> (under cap?) -> agent ... -> END

    Args:
        completion_client: Provider wrapper asked for each next step
        tools: Executor that runs tool calls by name
        tool_schemas: Descriptors offered to the model on every call

    Returns:
        Compiled LangGraph workflow
    """
    workflow = StateGraph(AgentState)

    workflow.add_node("agent", create_agent_node(completion_client, tool_schemas))
    workflow.add_node("tools", create_tools_node(tools))

    workflow.set_entry_point("agent")

    workflow.add_conditional_edges(
        "agent",
        route_agent_output,
        {
            "tools": "tools",
            "end": END,
        },
    )

    workflow.add_conditional_edges(
        "tools",
        route_tool_output,
        {
            "agent": "agent",
            "end": END,
        },
    )

    return workflow.compile()


def _as_state(values: Any) -> AgentState:
    return values if isinstance(values, AgentState) else AgentState.model_validate(values)


class AgentOrchestrator:
    """Runs one turn of the tool-calling loop.

    The orchestrator holds no state between turns and never touches storage;
    it returns the messages produced during the turn for the caller to persist.
    """

    def __init__(
        self,
        completion_client: CompletionClient,
        tools_registry: Any,
        max_iterations: int = MAX_ITERATIONS,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        """Initialize the orchestrator.

        Args:
            completion_client: Provider wrapper
            tools_registry: Registry exposing ``execute`` and ``get_tool_schemas``
            max_iterations: Hard cap on completion calls per turn
            system_prompt: Instruction prepended to every working transcript
        """
        self.completion_client = completion_client
        self.tools_registry = tools_registry
        self.max_iterations = max_iterations
        self.system_prompt = system_prompt
        self.graph = create_agent_graph(completion_client, tools_registry, tools_registry.get_tool_schemas())

    async def run(
        self,
        history: Sequence[Message],
        cancellation: CancellationToken | None = None,
    ) -> list[Message]:
        """Run the loop over ``history`` and return the messages produced this turn.

        Raises:
            TransportError: If the completion provider fails or the turn is
                cancelled. ``partial_output`` holds what completed steps produced.
        """
        initial_state = {
            "transcript": (Message.system(self.system_prompt), *history),
            "emitted": (),
            "iterations": 0,
            "max_iterations": self.max_iterations,
        }
        config = {
            "configurable": {"cancellation": cancellation or CancellationToken()},
            # Each iteration is two graph steps
            "recursion_limit": 2 * self.max_iterations + 2,
        }

        logger.info(f"Starting agent loop with {len(history)} history messages, max iterations: {self.max_iterations}")

        final_values: Any = None
        try:
            async for values in self.graph.astream(initial_state, config, stream_mode="values"):
                final_values = values
        except TransportError as e:
            e.partial_output = list(_as_state(final_values).emitted) if final_values is not None else []
            logger.error(f"Agent loop aborted after {len(e.partial_output)} produced messages: {e}")
            raise

        state = _as_state(final_values)
        logger.info(f"Agent loop finished after {state.iterations} iterations, {len(state.emitted)} messages")
        return list(state.emitted)
