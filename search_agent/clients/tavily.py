"""Tavily web search API client."""

import os
from dataclasses import dataclass

import httpx
from pydantic import BaseModel

from search_agent.exceptions import ConfigurationError, ToolExecutionError
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)


class SearchResult(BaseModel):
    """A single ranked search hit."""

    title: str | None = None
    url: str | None = None
    content: str | None = None
    score: float | None = None


@dataclass
class TavilyConfig:
    """Configuration for Tavily API client."""

    base_url: str = "https://api.tavily.com"
    search_depth: str = "basic"
    max_results: int = 5
    timeout: float = 30.0


class TavilyClient:
    """Thin async client for the Tavily search endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        config: TavilyConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Tavily client.

        Args:
            api_key: Tavily API key (defaults to TAVILY_API_KEY env var)
            config: Client configuration
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.api_key = api_key or os.getenv("TAVILY_API_KEY")
        self.config = config or TavilyConfig()
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def search(self, query: str) -> list[SearchResult]:
        """Search the web and return results in the provider's relevance order.

        Raises:
            ConfigurationError: If no API key is configured
            ToolExecutionError: On a non-success response or transport fault
        """
        if not self.api_key:
            raise ConfigurationError("TAVILY_API_KEY not configured")

        payload = {
            "api_key": self.api_key,
            "query": query,
            "search_depth": self.config.search_depth,
            "max_results": self.config.max_results,
        }

        logger.debug(f"Searching Tavily for: {query[:80]}")
        try:
            async with httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post("/search", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"Tavily request failed: {e}")
            raise ToolExecutionError(str(e) or e.__class__.__name__) from e

        if response.status_code != 200:
            logger.warning(f"Tavily API error: {response.status_code} - {response.text[:200]}")
            raise ToolExecutionError(f"Tavily API error: {response.status_code}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise ToolExecutionError(f"Tavily returned invalid JSON: {e}") from e

        results = [SearchResult.model_validate(item) for item in data.get("results") or []]
        logger.info(f"Tavily returned {len(results)} results")
        return results


_tavily_client: TavilyClient | None = None


def get_tavily_client() -> TavilyClient:
    """Get or create Tavily client instance."""
    global _tavily_client
    if _tavily_client is None:
        _tavily_client = TavilyClient()
    return _tavily_client
