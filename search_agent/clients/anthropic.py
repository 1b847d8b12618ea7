"""Anthropic API client with rate limiting and error handling."""

import asyncio
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import tiktoken
from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic
from anthropic.types import Message as AnthropicMessage
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from search_agent.exceptions import MessageTooLongError, TransportError
from search_agent.models.llm import CompletionResult, LLMUsage, TerminationReason, ToolSchema
from search_agent.models.messages import Message, ToolCall
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MISSING_KEY_MESSAGE = "Error: ANTHROPIC_API_KEY not configured. Please add your Anthropic API key to the environment."

_STOP_REASONS = {
    "end_turn": TerminationReason.STOP,
    "stop_sequence": TerminationReason.STOP,
    "tool_use": TerminationReason.TOOL_CALLS,
    "max_tokens": TerminationReason.LENGTH,
}


def parse_retry_after(value: str | None, default: float = 60.0) -> float:
    """Seconds from a ``retry-after`` header; HTTP-date or malformed values fall back to ``default``."""
    if value is None:
        return default
    try:
        seconds = float(value)
    except ValueError:
        logger.warning(f"Ignoring unparseable retry-after header: {value!r}")
        return default
    return max(seconds, 0.0)


@dataclass
class AnthropicConfig:
    """Configuration for Anthropic API client."""

    model: str = field(default_factory=lambda: os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5"))
    max_tokens: int = 1024
    temperature: float = 0.1
    max_retries: int = 3
    retry_delay: float = 1.0

    max_message_tokens: int = 2000  # Ceiling for a single inbound user message


class AnthropicRateLimiter:
    """Client-side rate limiter using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 40_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum estimated input tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "anthropic") -> None:
        """Wait until the request fits within both limits."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(estimated_tokens, 1)):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)


class AnthropicClient:
    """Completion client backed by the Anthropic Messages API.

    A missing credential does not raise: every call then answers with a
    synthetic assistant message explaining the problem, so a turn ends
    after one iteration instead of failing.
    """

    rate_limiter: AnthropicRateLimiter = AnthropicRateLimiter()

    def __init__(self, api_key: str | None = None, config: AnthropicConfig | None = None):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            config: Client configuration
        """
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.config = config or AnthropicConfig()
        self.client = AsyncAnthropic(api_key=self.api_key, max_retries=0) if self.api_key else None
        self._tokenizer: tiktoken.Encoding | None = None
        self._tokenizer_loaded = False

        if not self.api_key:
            logger.warning("ANTHROPIC_API_KEY is not set; completions will return a configuration notice")

    async def complete(
        self,
        transcript: list[Message],
        tool_schema: list[ToolSchema],
        enable_tools: bool = True,
    ) -> CompletionResult:
        """Run one completion exchange.

        Args:
            transcript: Working transcript, system message first
            tool_schema: Tool descriptors offered to the model
            enable_tools: Whether to send the tool descriptors at all

        Returns:
            Normalized assistant message and termination reason

        Raises:
            TransportError: If the provider answers with a non-success status
                or cannot be reached after retries
        """
        if self.client is None:
            return CompletionResult(
                message=Message.assistant(MISSING_KEY_MESSAGE),
                termination_reason=TerminationReason.STOP,
            )

        system_prompt, messages = self.build_messages(transcript)

        estimated_tokens = self.estimate_tokens(system_prompt + "".join(m.content for m in transcript))
        await self.rate_limiter.check_rate_limit(estimated_tokens)

        request_params: dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": messages,
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if enable_tools and tool_schema:
            request_params["tools"] = [self.build_tool(tool) for tool in tool_schema]

        logger.debug(
            f"Calling Anthropic model {request_params['model']} with {len(messages)} messages, "
            f"{len(request_params.get('tools', []))} tools"
        )
        response: AnthropicMessage = await self._request_with_retries(
            lambda: self.client.messages.create(**request_params)
        )

        return self.parse_response(response)

    async def _request_with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Execute an Anthropic API request with retry logic."""
        for attempt in range(self.config.max_retries):
            last_attempt = attempt == self.config.max_retries - 1
            try:
                return await call()

            except APIStatusError as e:
                if e.status_code == 429 and not last_attempt:
                    retry_after = parse_retry_after(e.response.headers.get("retry-after"))
                    if retry_after < 120:
                        logger.warning(f"Anthropic rate limited, retrying in {retry_after}s")
                        await asyncio.sleep(retry_after)
                        continue

                elif e.status_code >= 500 and not last_attempt:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue

                body = e.response.text if e.response is not None else str(e.body)
                logger.error(f"Anthropic API error: {e.status_code} - {body}")
                raise TransportError(
                    f"Anthropic API error: {e.status_code} - {body}",
                    status_code=e.status_code,
                    body=body,
                ) from e

            except APIConnectionError as e:
                if not last_attempt:
                    await asyncio.sleep(self.config.retry_delay * (2**attempt))
                    continue
                logger.error(f"Anthropic connection failed: {e}")
                raise TransportError(f"Anthropic connection failed: {e}") from e

        raise TransportError(f"Failed to complete request after {self.config.max_retries} attempts")

    @staticmethod
    def build_tool(tool: ToolSchema) -> dict[str, Any]:
        """Translate a tool descriptor into Anthropic's tool format."""
        return {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}

    @staticmethod
    def build_messages(transcript: list[Message]) -> tuple[str, list[dict[str, Any]]]:
        """Translate the abstract transcript into Anthropic's system prompt and turns.

        Tool results travel as tool_result blocks in a user turn, and
        consecutive turns of the same role are merged.
        """
        system_parts: list[str] = []
        turns: list[dict[str, Any]] = []

        for message in transcript:
            if message.role == "system":
                system_parts.append(message.content)
                continue

            blocks: list[dict[str, Any]] = []
            if message.role == "tool":
                role = "user"
                blocks.append({"type": "tool_result", "tool_use_id": message.tool_call_id, "content": message.content})
            else:
                role = message.role
                if message.content:
                    blocks.append({"type": "text", "text": message.content})
                for call in message.tool_calls or ():
                    blocks.append({"type": "tool_use", "id": call.id, "name": call.tool_name, "input": call.arguments})

            if not blocks:
                continue

            if turns and turns[-1]["role"] == role:
                turns[-1]["content"].extend(blocks)
            else:
                turns.append({"role": role, "content": blocks})

        return "\n\n".join(system_parts), turns

    @staticmethod
    def parse_response(response: AnthropicMessage) -> CompletionResult:
        """Normalize an Anthropic reply into an assistant message."""
        texts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, tool_name=block.name, arguments=dict(block.input or {})))
            else:
                logger.warning(f"Ignoring unsupported content block type: {block.type}")

        usage = None
        if response.usage:
            usage = LLMUsage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                total_tokens=response.usage.input_tokens + response.usage.output_tokens,
            )
            logger.info(f"Token usage - Input: {usage.input_tokens}, Output: {usage.output_tokens}")

        reason = _STOP_REASONS.get(response.stop_reason or "", TerminationReason.OTHER)
        logger.debug(f"Response received - Stop reason: {response.stop_reason}, tool calls: {len(tool_calls)}")

        return CompletionResult(
            message=Message.assistant("".join(texts), tool_calls),
            termination_reason=reason,
            usage=usage,
            model=response.model,
        )

    def _load_tokenizer(self) -> tiktoken.Encoding | None:
        try:
            # Close approximation for Claude
            return tiktoken.encoding_for_model("gpt-4")
        except Exception as e:
            logger.debug(f"Tokenizer unavailable, using character estimate: {e}")
            return None

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for a piece of text.

        Falls back to roughly 4 characters per token when no tokenizer is available.
        """
        if not self._tokenizer_loaded:
            self._tokenizer = self._load_tokenizer()
            self._tokenizer_loaded = True
        try:
            return len(self._tokenizer.encode(text)) if self._tokenizer else len(text) // 4
        except Exception:
            return len(text) // 4

    def validate_message_tokens(self, message: str) -> None:
        """Validate that an inbound message doesn't exceed the token ceiling.

        Raises:
            MessageTooLongError: If message exceeds token limit
        """
        token_count = self.estimate_tokens(message)
        if token_count > self.config.max_message_tokens:
            raise MessageTooLongError(
                f"Your message is too long. Please keep messages under {self.config.max_message_tokens} tokens.",
                token_count=token_count,
            )


_anthropic_client: AnthropicClient | None = None


def get_anthropic_client() -> AnthropicClient:
    """Get or create Anthropic client instance."""
    global _anthropic_client
    if _anthropic_client is None:
        _anthropic_client = AnthropicClient()
    return _anthropic_client
