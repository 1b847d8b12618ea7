"""Main FastAPI application."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from search_agent import __version__
from search_agent.api.endpoints import router
from search_agent.utils.logging import setup_logging

setup_logging()

app = FastAPI(
    title="Search Agent",
    description=(
        "A chat assistant that answers with the help of web search, "
        "persisting every step of each conversation."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "Chat",
            "description": "Send a message and receive the assistant's answer.",
        },
        {
            "name": "Health",
            "description": "Service health monitoring and status checks.",
        },
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("search_agent.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
