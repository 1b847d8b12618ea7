"""Error taxonomy for the chat agent.

Configuration and tool errors are recovered where they happen and turned into
ordinary message text. Transport and invariant errors abort the turn and are
reported by the HTTP boundary as a generic failure.
"""

from typing import Any


class SearchAgentError(Exception):
    """Base class for all service errors.

    Attributes:
        message: Human readable description.
        http_status: Status code used when the error reaches the API layer.
    """

    http_status: int = 500

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)


class ConfigurationError(SearchAgentError):
    """A required credential or setting is missing."""


class ToolExecutionError(SearchAgentError):
    """A tool failed; always converted to tool-message content."""


class TransportError(SearchAgentError):
    """The completion provider failed or could not be reached.

    Attributes:
        status_code: Upstream HTTP status, if any.
        body: Upstream response body, if any.
        partial_output: Messages produced by completed steps of the aborted turn.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None, **extra: Any):
        super().__init__(message, **extra)
        self.status_code = status_code
        self.body = body
        self.partial_output: list = []


class TurnCancelledError(TransportError):
    """The turn was cancelled or ran past its deadline."""


class InvariantViolation(SearchAgentError):
    """Persisted history cannot be replayed to the completion provider."""


class StoreError(SearchAgentError):
    """The conversation store rejected or failed a read or write."""


class ConversationNotFoundError(SearchAgentError):
    """A turn referenced a conversation id that does not exist."""

    http_status = 404


class ConversationBusyError(SearchAgentError):
    """Another turn holds the conversation lock."""

    http_status = 409


class MessageTooLongError(SearchAgentError):
    """The inbound user message exceeds the per-message token ceiling."""

    http_status = 400
