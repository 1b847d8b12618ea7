"""Cooperative cancellation for agent turns."""

import time

from langchain_core.runnables import RunnableConfig

from search_agent.exceptions import TurnCancelledError


class CancellationToken:
    """Cancellation flag with an optional monotonic deadline.

    Checked by the graph nodes before every provider call and every tool call.
    """

    def __init__(self, timeout: float | None = None, deadline: float | None = None):
        """Initialize the token.

        Args:
            timeout: Seconds from now after which the turn counts as cancelled
            deadline: Absolute ``time.monotonic()`` value, overrides ``timeout``
        """
        if deadline is None and timeout is not None:
            deadline = time.monotonic() + timeout
        self.deadline = deadline
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TurnCancelledError("Turn cancelled")
        if self.cancelled:
            raise TurnCancelledError("Turn deadline exceeded")


def get_cancellation(config: RunnableConfig | None) -> CancellationToken:
    """Token carried in the run config, or a token that never fires."""
    configurable = (config or {}).get("configurable") or {}
    return configurable.get("cancellation") or CancellationToken()
