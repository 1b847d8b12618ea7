"""Web search tool."""

from pydantic import BaseModel, Field

from search_agent.clients.tavily import SearchResult, TavilyClient
from search_agent.exceptions import ConfigurationError, ToolExecutionError
from search_agent.tools.base import ToolDefinition
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

WEB_SEARCH_DESCRIPTION = (
    "Search the web for current information. "
    "Use this when you need to find up-to-date information about any topic."
)
MISSING_KEY_MESSAGE = "Error: TAVILY_API_KEY not configured. Please add your Tavily API key to the environment."
NO_RESULTS_MESSAGE = "No search results found."


class WebSearchInput(BaseModel):
    """Input schema for the web search tool."""

    query: str = Field(..., min_length=1, description="The search query")


def format_results(results: list[SearchResult]) -> str:
    """Render results as numbered blocks of title, url and excerpt."""
    return "\n\n".join(
        f"[{index}] {result.title or ''}\n{result.url or ''}\n{result.content or ''}"
        for index, result in enumerate(results, start=1)
    )


def create_web_search_tool(search_client: TavilyClient) -> ToolDefinition:
    async def web_search_handler(params: WebSearchInput) -> str:
        try:
            results = await search_client.search(params.query)
        except ConfigurationError:
            logger.warning("Web search requested but TAVILY_API_KEY is not configured")
            return MISSING_KEY_MESSAGE
        except ToolExecutionError as e:
            return f"Search error: {e.message}"

        if not results:
            return NO_RESULTS_MESSAGE

        return format_results(results)

    return ToolDefinition(
        name="web_search",
        description=WEB_SEARCH_DESCRIPTION,
        input_schema_class=WebSearchInput,
        handler=web_search_handler,
    )
