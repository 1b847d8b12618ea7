"""Conversation service: runs one chat turn end to end."""

import os
from collections.abc import Callable
from dataclasses import dataclass

from search_agent.clients.anthropic import get_anthropic_client
from search_agent.exceptions import ConversationNotFoundError, TransportError
from search_agent.graphs.agent import AgentOrchestrator
from search_agent.graphs.cancellation import CancellationToken
from search_agent.models.messages import Message, validate_transcript
from search_agent.services.conversation_store import ConversationStore, get_conversation_store
from search_agent.services.locks import ConversationLockManager, conversation_locks
from search_agent.tools.registry import get_tools_registry
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

FALLBACK_RESPONSE = "I apologize, but I couldn't generate a response."
TITLE_LENGTH = 50


@dataclass
class TurnResult:
    """Outcome of a processed turn."""

    conversation_id: str
    response: str
    produced: list[Message]


def final_answer(produced: list[Message]) -> str:
    """Text of the trailing assistant message, or the fallback if the turn produced no answer."""
    if produced and produced[-1].role == "assistant" and produced[-1].content:
        return produced[-1].content
    return FALLBACK_RESPONSE


class ConversationService:
    """Loads history, runs the agent and persists everything it produced."""

    def __init__(
        self,
        orchestrator: AgentOrchestrator,
        store: ConversationStore,
        locks: ConversationLockManager | None = None,
        message_validator: Callable[[str], None] | None = None,
        turn_timeout: float | None = None,
    ):
        """Initialize conversation service.

        Args:
            orchestrator: Agent loop runner
            store: Conversation storage
            locks: Per-conversation lock manager
            message_validator: Callable rejecting oversize inbound messages
            turn_timeout: Seconds after which a turn is cancelled, if set
        """
        self.orchestrator = orchestrator
        self.store = store
        self.locks = locks or conversation_locks
        self.message_validator = message_validator
        self.turn_timeout = turn_timeout

    async def process_message(self, message: str, conversation_id: str | None = None) -> TurnResult:
        """Process a user message and return the assistant's answer.

        Args:
            message: User's message
            conversation_id: Existing conversation, or None to start one

        Returns:
            Conversation id, answer text and the messages produced this turn

        Raises:
            MessageTooLongError: If the message exceeds the token ceiling
            ConversationNotFoundError: If ``conversation_id`` is unknown
            ConversationBusyError: If another turn holds the conversation
            TransportError: If the completion provider failed
            InvariantViolation: If the stored history is malformed
            StoreError: If storage failed
        """
        if self.message_validator is not None:
            self.message_validator(message)

        if conversation_id:
            if await self.store.get_conversation(conversation_id) is None:
                logger.warning(f"Unknown conversation id: {conversation_id}")
                raise ConversationNotFoundError(f"Conversation not found: {conversation_id}")
        else:
            conversation = await self.store.create_conversation(title=message[:TITLE_LENGTH])
            conversation_id = conversation.id

        async with self.locks.hold(conversation_id):
            await self.store.append_message(conversation_id, Message.user(message))

            history = await self.store.list_messages(conversation_id)
            validate_transcript(history)

            cancellation = CancellationToken(timeout=self.turn_timeout) if self.turn_timeout else None
            try:
                produced = await self.orchestrator.run(history, cancellation=cancellation)
            except TransportError as e:
                logger.error(
                    f"Turn failed for conversation {conversation_id}; "
                    f"discarding {len(e.partial_output)} unpersisted messages"
                )
                raise

            # One batch so a tool call is never stored without its results
            await self.store.append_messages(conversation_id, produced)

        response = final_answer(produced)
        if response == FALLBACK_RESPONSE:
            logger.warning(f"No final answer produced for conversation {conversation_id}")

        logger.info(f"Turn complete for conversation {conversation_id}: {len(produced)} messages persisted")
        return TurnResult(conversation_id=conversation_id, response=response, produced=produced)


_conversation_service: ConversationService | None = None


def get_conversation_service() -> ConversationService:
    """Get or create conversation service instance."""
    global _conversation_service
    if _conversation_service is None:
        anthropic_client = get_anthropic_client()
        _conversation_service = ConversationService(
            orchestrator=AgentOrchestrator(anthropic_client, get_tools_registry()),
            store=get_conversation_store(),
            message_validator=anthropic_client.validate_message_tokens,
            turn_timeout=float(os.getenv("AGENT_TURN_TIMEOUT", "0")) or None,
        )
    return _conversation_service
