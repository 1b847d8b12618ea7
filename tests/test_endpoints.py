"""Tests for API endpoints."""

import pytest
from fastapi.testclient import TestClient

from search_agent.api.endpoints import GENERIC_ERROR
from search_agent.exceptions import MessageTooLongError, StoreError, TransportError
from search_agent.graphs.agent import AgentOrchestrator
from search_agent.main import app
from search_agent.models.messages import Message
from search_agent.services.conversation import ConversationService, get_conversation_service
from search_agent.services.conversation_store import InMemoryConversationStore
from search_agent.services.locks import ConversationLockManager
from search_agent.tools.registry import create_default_registry
from tests.stubs import PARIS_RESULT, StubCompletionClient, StubSearchClient, search_call


def reject_long_messages(message: str) -> None:
    if len(message) > 100:
        raise MessageTooLongError("Your message is too long. Please shorten it.")


@pytest.fixture
def completion():
    return StubCompletionClient(search_call("call_1", "paris weather"), Message.assistant("It is 18°C in Paris [1]."))


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def client(completion, store):
    service = ConversationService(
        orchestrator=AgentOrchestrator(completion, create_default_registry(StubSearchClient(results=[PARIS_RESULT]))),
        store=store,
        locks=ConversationLockManager(lock_timeout=1.0),
        message_validator=reject_long_messages,
    )
    app.dependency_overrides[get_conversation_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "0.1.0"
        assert "timestamp" in data


class TestChatEndpoint:
    """Tests for the chat endpoint."""

    def test_new_conversation(self, client, store):
        response = client.post("/chat", json={"message": "What's the weather in Paris?"})

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"conversationId", "response"}
        assert data["response"] == "It is 18°C in Paris [1]."
        assert data["conversationId"] in store.conversations

    def test_follow_up_turn_reuses_conversation(self, client, store, completion):
        first = client.post("/chat", json={"message": "Weather in Paris?"}).json()

        response = client.post("/chat", json={"message": "And tomorrow?", "conversationId": first["conversationId"]})

        assert response.status_code == 200
        assert response.json()["conversationId"] == first["conversationId"]
        assert len(store.conversations) == 1
        assert completion.calls[-1][-1].content == "And tomorrow?"

    def test_unknown_conversation(self, client):
        response = client.post("/chat", json={"message": "Hi", "conversationId": "missing"})

        assert response.status_code == 404
        assert response.json() == {"error": "Conversation not found: missing"}

    def test_missing_message_is_rejected(self, client):
        response = client.post("/chat", json={"conversationId": "abc"})
        assert response.status_code == 422

    def test_message_too_long(self, client, store):
        response = client.post("/chat", json={"message": "x" * 500})

        assert response.status_code == 400
        assert "too long" in response.json()["error"]
        assert store.conversations == {}

    def test_transport_failure_returns_generic_error(self, client, completion, store):
        completion.script = [TransportError("Anthropic API error: 500 - boom")]

        response = client.post("/chat", json={"message": "Hi"})

        assert response.status_code == 500
        assert response.json() == {"error": GENERIC_ERROR}
        [conversation_id] = store.conversations
        assert [m.role for m in store.messages[conversation_id]] == ["user"]

    def test_store_failure_returns_generic_error(self, client, store, monkeypatch):
        async def broken(conversation_id, message):
            raise StoreError("Storage error: 503 - unavailable")

        monkeypatch.setattr(store, "append_message", broken)

        response = client.post("/chat", json={"message": "Hi"})

        assert response.status_code == 500
        assert response.json() == {"error": GENERIC_ERROR}

    def test_unexpected_failure_returns_generic_error(self, client, completion):
        completion.script = [RuntimeError("unexpected")]

        response = client.post("/chat", json={"message": "Hi"})

        assert response.status_code == 500
        assert response.json() == {"error": GENERIC_ERROR}


class TestDocumentation:
    """Tests for the generated API documentation."""

    def test_openapi_lists_routes(self, client):
        schema = client.get("/openapi.json").json()

        assert schema["info"]["title"] == "Search Agent"
        assert "/chat" in schema["paths"]
        assert "/health" in schema["paths"]

    @pytest.mark.parametrize("path", ["/docs", "/redoc"])
    def test_docs_pages(self, client, path):
        response = client.get(path)
        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
