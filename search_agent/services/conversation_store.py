"""Conversation storage: an ordered, append-only message log per conversation."""

import json
import os
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import httpx
from cuid2 import cuid_wrapper
from pydantic import ValidationError

from search_agent.exceptions import InvariantViolation, StoreError
from search_agent.models.messages import Conversation, Message
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

cuid = cuid_wrapper()

MESSAGE_COLUMNS = "role,content,tool_calls,tool_call_id,created_at"


class ConversationStore(Protocol):
    """Interface for conversation storage backends."""

    async def create_conversation(self, title: str | None) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def append_message(self, conversation_id: str, message: Message) -> Message: ...

    async def append_messages(self, conversation_id: str, messages: Sequence[Message]) -> list[Message]:
        """Append all of ``messages`` or none of them."""
        ...

    async def list_messages(self, conversation_id: str) -> list[Message]: ...


def stamp_messages(messages: Sequence[Message], after: datetime | None = None) -> list[Message]:
    """Copies of ``messages`` with strictly increasing ``created_at``, all later than ``after``."""
    stamped: list[Message] = []
    previous = after
    for message in messages:
        created_at = datetime.now(UTC)
        if previous is not None and created_at <= previous:
            created_at = previous + timedelta(microseconds=1)
        stamped.append(message.model_copy(update={"created_at": created_at}))
        previous = created_at
    return stamped


def message_to_row(conversation_id: str, message: Message) -> dict[str, Any]:
    """Row shape used by the messages table."""
    return {
        "conversation_id": conversation_id,
        "role": message.role,
        "content": message.content,
        "tool_calls": [call.model_dump(mode="json") for call in message.tool_calls] if message.tool_calls else None,
        "tool_call_id": message.tool_call_id,
        "created_at": message.created_at.isoformat(),
    }


def row_to_message(row: dict[str, Any]) -> Message:
    """Rebuild a message from a stored row.

    Raises:
        InvariantViolation: If the row cannot form a valid message
    """
    data = {key: value for key, value in row.items() if value is not None}
    if isinstance(data.get("tool_calls"), str):
        data["tool_calls"] = json.loads(data["tool_calls"])
    try:
        return Message.model_validate(data)
    except ValidationError as e:
        raise InvariantViolation(f"Malformed stored message: {e}") from e


class InMemoryConversationStore:
    """Process-local store, used in development and when no database is configured."""

    def __init__(self):
        self.conversations: dict[str, Conversation] = {}
        self.messages: dict[str, list[Message]] = {}

    async def create_conversation(self, title: str | None) -> Conversation:
        conversation = Conversation(id=cuid(), title=title)
        self.conversations[conversation.id] = conversation
        self.messages[conversation.id] = []
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    async def append_message(self, conversation_id: str, message: Message) -> Message:
        [stored] = await self.append_messages(conversation_id, [message])
        return stored

    async def append_messages(self, conversation_id: str, messages: Sequence[Message]) -> list[Message]:
        if conversation_id not in self.conversations:
            raise StoreError(f"Conversation not found: {conversation_id}")

        log = self.messages[conversation_id]
        stored = stamp_messages(messages, after=log[-1].created_at if log else None)
        log.extend(stored)
        return stored

    async def list_messages(self, conversation_id: str) -> list[Message]:
        return list(self.messages.get(conversation_id, []))


class SupabaseConversationStore:
    """Store backed by Supabase's PostgREST API (``conversations`` and ``messages`` tables)."""

    def __init__(self, url: str, service_key: str, transport: httpx.AsyncBaseTransport | None = None):
        """Initialize Supabase store.

        Args:
            url: Project URL, e.g. https://xyz.supabase.co
            service_key: Service role key
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._transport = transport

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=30.0,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Supabase request failed: {method} {path}: {e}")
            raise StoreError(f"Storage request failed: {e}") from e

        if response.status_code >= 300:
            logger.error(f"Supabase error: {response.status_code} - {response.text[:200]}")
            raise StoreError(
                f"Storage error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json() if response.content else None

    async def create_conversation(self, title: str | None) -> Conversation:
        rows = await self._request(
            "POST",
            "/conversations",
            json={"title": title},
            headers={"Prefer": "return=representation"},
        )
        conversation = Conversation.model_validate(rows[0])
        logger.info(f"Created conversation {conversation.id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        rows = await self._request(
            "GET",
            "/conversations",
            params={"id": f"eq.{conversation_id}", "select": "id,title,created_at"},
        )
        return Conversation.model_validate(rows[0]) if rows else None

    async def append_message(self, conversation_id: str, message: Message) -> Message:
        [stored] = await self.append_messages(conversation_id, [message])
        return stored

    async def append_messages(self, conversation_id: str, messages: Sequence[Message]) -> list[Message]:
        """Insert all rows in one request; PostgREST runs a bulk insert as a single statement."""
        stamped = stamp_messages(messages)
        if not stamped:
            return []

        rows = await self._request(
            "POST",
            "/messages",
            json=[message_to_row(conversation_id, message) for message in stamped],
            headers={"Prefer": "return=representation"},
        )
        return [row_to_message(row) for row in rows] if rows else stamped

    async def list_messages(self, conversation_id: str) -> list[Message]:
        rows = await self._request(
            "GET",
            "/messages",
            params={
                "conversation_id": f"eq.{conversation_id}",
                "select": MESSAGE_COLUMNS,
                "order": "created_at.asc",
            },
        )
        return [row_to_message(row) for row in rows or []]


def create_conversation_store() -> ConversationStore:
    """Supabase store when SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are set, in-memory otherwise."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    if url and key:
        logger.info("Using Supabase conversation store")
        return SupabaseConversationStore(url, key)

    logger.warning("SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY not set; conversations are kept in memory only")
    return InMemoryConversationStore()


_conversation_store: ConversationStore | None = None


def get_conversation_store() -> ConversationStore:
    """Get or create conversation store instance."""
    global _conversation_store
    if _conversation_store is None:
        _conversation_store = create_conversation_store()
    return _conversation_store
