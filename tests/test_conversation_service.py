"""Tests for the turn-level conversation service and its lock manager."""

import asyncio

import pytest

from search_agent.exceptions import (
    ConversationBusyError,
    ConversationNotFoundError,
    InvariantViolation,
    MessageTooLongError,
    StoreError,
    TransportError,
)
from search_agent.graphs.agent import AgentOrchestrator
from search_agent.models.messages import Message, validate_transcript
from search_agent.services.conversation import FALLBACK_RESPONSE, ConversationService, final_answer
from search_agent.services.conversation_store import InMemoryConversationStore
from search_agent.services.locks import ConversationLockManager
from search_agent.tools.registry import create_default_registry
from tests.stubs import PARIS_RESULT, StubCompletionClient, StubSearchClient, search_call


class RowLimitedStore(InMemoryConversationStore):
    """In-memory store whose single-row appends fail past a limit and whose batches can be made to fail."""

    def __init__(self, max_single_appends: int | None = None, fail_batches: bool = False):
        super().__init__()
        self.max_single_appends = max_single_appends
        self.fail_batches = fail_batches
        self.single_appends = 0
        self.batches: list[int] = []

    async def append_message(self, conversation_id: str, message: Message) -> Message:
        self.single_appends += 1
        if self.max_single_appends is not None and self.single_appends > self.max_single_appends:
            raise StoreError("Storage error: 503 - unavailable")
        return await super().append_message(conversation_id, message)

    async def append_messages(self, conversation_id: str, messages) -> list[Message]:
        if self.fail_batches and len(messages) > 1:
            raise StoreError("Storage error: 503 - unavailable")
        self.batches.append(len(messages))
        return await super().append_messages(conversation_id, messages)


def make_service(completion: StubCompletionClient, store=None, **kwargs) -> ConversationService:
    registry = create_default_registry(StubSearchClient(results=[PARIS_RESULT]))
    return ConversationService(
        orchestrator=AgentOrchestrator(completion, registry, max_iterations=kwargs.pop("max_iterations", 5)),
        store=store or InMemoryConversationStore(),
        locks=ConversationLockManager(lock_timeout=1.0),
        **kwargs,
    )


class TestFinalAnswer:
    def test_trailing_assistant(self):
        assert final_answer([search_call("c1", "x"), Message.tool("r", "c1"), Message.assistant("Done")]) == "Done"

    def test_trailing_tool_message(self):
        assert final_answer([search_call("c1", "x"), Message.tool("r", "c1")]) == FALLBACK_RESPONSE

    def test_empty_output(self):
        assert final_answer([]) == FALLBACK_RESPONSE

    def test_empty_assistant_content(self):
        assert final_answer([Message.assistant("")]) == FALLBACK_RESPONSE


class TestConversationService:
    @pytest.mark.asyncio
    async def test_new_conversation(self):
        store = InMemoryConversationStore()
        service = make_service(StubCompletionClient(Message.assistant("Hi there!")), store)
        message = "Hello! " * 20

        result = await service.process_message(message)

        conversation = await store.get_conversation(result.conversation_id)
        assert conversation.title == message[:50]
        assert result.response == "Hi there!"
        stored = await store.list_messages(result.conversation_id)
        assert [(m.role, m.content) for m in stored] == [("user", message), ("assistant", "Hi there!")]

    @pytest.mark.asyncio
    async def test_persists_every_produced_message_in_order(self):
        store = InMemoryConversationStore()
        completion = StubCompletionClient(search_call("call_1", "paris weather"), Message.assistant("18°C [1]."))
        service = make_service(completion, store)

        result = await service.process_message("Weather in Paris?")

        stored = await store.list_messages(result.conversation_id)
        assert [m.role for m in stored] == ["user", "assistant", "tool", "assistant"]
        assert stored[1].tool_calls[0].id == "call_1"
        assert stored[2].tool_call_id == "call_1"
        assert all(a.created_at < b.created_at for a, b in zip(stored, stored[1:], strict=False))
        assert result.response == "18°C [1]."

    @pytest.mark.asyncio
    async def test_existing_conversation_history_is_replayed(self):
        store = InMemoryConversationStore()
        completion = StubCompletionClient(Message.assistant("First"), Message.assistant("Second"))
        service = make_service(completion, store)

        first = await service.process_message("One")
        second = await service.process_message("Two", first.conversation_id)

        assert second.conversation_id == first.conversation_id
        replayed = completion.calls[1]
        assert [(m.role, m.content) for m in replayed[1:]] == [
            ("user", "One"),
            ("assistant", "First"),
            ("user", "Two"),
        ]
        assert len(store.conversations) == 1

    @pytest.mark.asyncio
    async def test_unknown_conversation(self):
        service = make_service(StubCompletionClient(Message.assistant("Hi")))

        with pytest.raises(ConversationNotFoundError):
            await service.process_message("Hello", "does-not-exist")

    @pytest.mark.asyncio
    async def test_fallback_when_cap_reached(self):
        store = InMemoryConversationStore()
        service = make_service(StubCompletionClient(search_call("c1", "again")), store, max_iterations=2)

        result = await service.process_message("Loop")

        assert result.response == FALLBACK_RESPONSE
        stored = await store.list_messages(result.conversation_id)
        assert [m.role for m in stored] == ["user", "assistant", "tool", "assistant", "tool"]

    @pytest.mark.asyncio
    async def test_transport_failure_persists_only_user_message(self):
        store = InMemoryConversationStore()
        completion = StubCompletionClient(search_call("c1", "x"), TransportError("Anthropic API error: 500 - down"))
        service = make_service(completion, store)
        conversation = await store.create_conversation("t")

        with pytest.raises(TransportError):
            await service.process_message("Hello", conversation.id)

        stored = await store.list_messages(conversation.id)
        assert [m.role for m in stored] == ["user"]

    @pytest.mark.asyncio
    async def test_orphaned_tool_message_in_history(self):
        store = InMemoryConversationStore()
        conversation = await store.create_conversation("t")
        await store.append_message(conversation.id, Message.user("Hi"))
        await store.append_message(conversation.id, Message.tool("stray", "call_9"))
        completion = StubCompletionClient(Message.assistant("Hi"))
        service = make_service(completion, store)

        with pytest.raises(InvariantViolation):
            await service.process_message("Hello", conversation.id)

        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_unanswered_tool_call_in_history(self):
        store = InMemoryConversationStore()
        conversation = await store.create_conversation("t")
        await store.append_message(conversation.id, Message.user("Weather?"))
        await store.append_message(conversation.id, search_call("call_1", "weather"))
        completion = StubCompletionClient(Message.assistant("Hi"))
        service = make_service(completion, store)

        with pytest.raises(InvariantViolation, match="unanswered"):
            await service.process_message("Hello?", conversation.id)

        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_turn_output_is_persisted_in_one_batch(self):
        store = RowLimitedStore(max_single_appends=1)
        completion = StubCompletionClient(search_call("call_1", "paris weather"), Message.assistant("18°C [1]."))
        service = make_service(completion, store)

        result = await service.process_message("Weather in Paris?")

        stored = await store.list_messages(result.conversation_id)
        assert [m.role for m in stored] == ["user", "assistant", "tool", "assistant"]
        assert store.batches == [1, 3]
        assert store.single_appends == 1

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_history_replayable(self):
        store = RowLimitedStore(fail_batches=True)
        completion = StubCompletionClient(
            search_call("call_1", "paris weather"),
            Message.assistant("18°C [1]."),
            Message.assistant("Still 18°C."),
        )
        service = make_service(completion, store)
        conversation = await store.create_conversation("t")

        with pytest.raises(StoreError):
            await service.process_message("Weather in Paris?", conversation.id)

        assert [m.role for m in await store.list_messages(conversation.id)] == ["user"]

        store.fail_batches = False
        result = await service.process_message("And now?", conversation.id)

        assert result.response == "Still 18°C."
        validate_transcript(await store.list_messages(conversation.id))

    @pytest.mark.asyncio
    async def test_message_validator_runs_before_storage(self):
        store = InMemoryConversationStore()

        def reject(message: str) -> None:
            raise MessageTooLongError("Your message is too long.")

        service = make_service(StubCompletionClient(Message.assistant("Hi")), store, message_validator=reject)

        with pytest.raises(MessageTooLongError):
            await service.process_message("x" * 10_000)

        assert store.conversations == {}

    @pytest.mark.asyncio
    async def test_turn_timeout_cancels_turn(self):
        service = make_service(StubCompletionClient(Message.assistant("Hi")), turn_timeout=-1)

        with pytest.raises(TransportError):
            await service.process_message("Hello")


class TestConversationLockManager:
    @pytest.mark.asyncio
    async def test_second_holder_times_out(self):
        locks = ConversationLockManager(lock_timeout=0.01)

        async with locks.hold("conv-1"):
            assert locks.is_locked("conv-1")
            with pytest.raises(ConversationBusyError):
                async with locks.hold("conv-1"):
                    pass

        assert not locks.is_locked("conv-1")

    @pytest.mark.asyncio
    async def test_released_on_error_and_cleaned_up(self):
        locks = ConversationLockManager()

        with pytest.raises(RuntimeError):
            async with locks.hold("conv-1"):
                raise RuntimeError("boom")

        assert locks._locks == {}
        async with locks.hold("conv-1"):
            pass

    @pytest.mark.asyncio
    async def test_turns_on_one_conversation_are_serialized(self):
        locks = ConversationLockManager()
        events: list[str] = []

        async def turn(name: str) -> None:
            async with locks.hold("conv-1"):
                events.append(f"{name}-start")
                await asyncio.sleep(0.01)
                events.append(f"{name}-end")

        await asyncio.gather(turn("a"), turn("b"))

        assert events == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_conversations_do_not_block(self):
        locks = ConversationLockManager(lock_timeout=0.01)

        async with locks.hold("conv-1"):
            async with locks.hold("conv-2"):
                assert locks.is_locked("conv-1")
                assert locks.is_locked("conv-2")
