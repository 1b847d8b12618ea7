"""API endpoints for the chat agent service."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from search_agent import __version__
from search_agent.exceptions import (
    ConversationBusyError,
    ConversationNotFoundError,
    MessageTooLongError,
    SearchAgentError,
)
from search_agent.models.conversation import ChatRequest, ChatResponse, ErrorResponse, HealthResponse
from search_agent.services.conversation import ConversationService, get_conversation_service
from search_agent.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

GENERIC_ERROR = "I apologize, but I'm experiencing technical difficulties. Please try again."


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@router.post(
    "/chat",
    response_model=ChatResponse,
    response_model_by_alias=True,
    responses={status: {"model": ErrorResponse} for status in (400, 404, 409, 500)},
    tags=["Chat"],
)
async def handle_chat(
    request: ChatRequest,
    service: ConversationService = Depends(get_conversation_service),
) -> ChatResponse | JSONResponse:
    """Run one chat turn and return the assistant's answer.

    Starts a new conversation when no conversationId is supplied.
    """
    logger.info(f"Processing message for conversation {request.conversation_id or '(new)'}: {request.message[:50]}...")

    try:
        result = await service.process_message(request.message, request.conversation_id)
    except (MessageTooLongError, ConversationNotFoundError, ConversationBusyError) as e:
        logger.warning(f"Rejected chat request: {e.message}")
        return error_response(e.http_status, e.message)
    except SearchAgentError as e:
        logger.error(f"Chat turn failed ({e.__class__.__name__}): {e}", exc_info=True)
        return error_response(500, GENERIC_ERROR)
    except Exception as e:
        logger.error(f"Unexpected chat error: {e}", exc_info=True)
        return error_response(500, GENERIC_ERROR)

    logger.info(f"Generated response for conversation {result.conversation_id}: {result.response[:50]}...")
    return ChatResponse(conversation_id=result.conversation_id, response=result.response)


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )
