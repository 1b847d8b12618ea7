"""Edge logic and routing for the agent graph."""

from typing import Literal

from search_agent.graphs.state import AgentState
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)


def route_agent_output(state: AgentState) -> Literal["tools", "end"]:
    """Route from the agent node.

    Tool calls on the newest assistant message send the run to the tools
    node; anything else is a final answer.
    """
    last = state.last_message
    if last is not None and last.has_tool_calls:
        return "tools"
    return "end"


def route_tool_output(state: AgentState) -> Literal["agent", "end"]:
    """Route from the tools node back to the agent unless the iteration cap is reached."""
    if state.iterations >= state.max_iterations:
        logger.warning(f"Agent loop reached max iterations ({state.max_iterations}) without a final answer")
        return "end"
    return "agent"
