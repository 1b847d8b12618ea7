"""State definitions for the agent graph."""

from pydantic import BaseModel, ConfigDict

from search_agent.models.messages import Message

MAX_ITERATIONS = 5


class AgentState(BaseModel):
    """Immutable state threaded through the agent graph.

    Nodes never mutate it; they return new ``transcript`` and ``emitted``
    tuples which LangGraph folds into the next state.
    """

    model_config = ConfigDict(frozen=True)

    # Working transcript: synthesized system message, history, then this turn's output
    transcript: tuple[Message, ...]

    # Messages produced during this turn, handed back for persistence
    emitted: tuple[Message, ...] = ()

    # Completed completion calls
    iterations: int = 0
    max_iterations: int = MAX_ITERATIONS

    @property
    def last_message(self) -> Message | None:
        return self.transcript[-1] if self.transcript else None
