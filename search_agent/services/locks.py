"""Per-conversation mutual exclusion for agent turns."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from search_agent.exceptions import ConversationBusyError
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationLockManager:
    """Ensures at most one in-flight turn per conversation within this process."""

    def __init__(self, lock_timeout: float = 60.0):
        """Initialize lock manager.

        Args:
            lock_timeout: Seconds to wait for a busy conversation before giving up
        """
        self.lock_timeout = lock_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        """Hold the conversation's lock for the duration of the block.

        Raises:
            ConversationBusyError: If the lock is not acquired within ``lock_timeout``
        """
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1

        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
            except TimeoutError as e:
                logger.warning(f"Conversation {conversation_id} is busy; gave up after {self.lock_timeout}s")
                raise ConversationBusyError(
                    "Another message for this conversation is still being processed. Please try again."
                ) from e

            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[conversation_id] -= 1
            if not self._waiters[conversation_id]:
                del self._waiters[conversation_id]
                self._locks.pop(conversation_id, None)

    def is_locked(self, conversation_id: str) -> bool:
        lock = self._locks.get(conversation_id)
        return lock is not None and lock.locked()


conversation_locks = ConversationLockManager()
