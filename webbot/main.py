"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from webbot.api.router import api_router
from webbot.config import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logger.info(
        "Starting WebBot agent server (model=%s, workspace=%s)",
        settings.gemini_model,
        settings.workspace_root,
    )
    if not settings.google_api_key:
        logger.warning("GOOGLE_API_KEY not set - chat requests will fail")

    yield

    logger.info("WebBot agent server shut down cleanly")


app = FastAPI(
    title="WebBot API",
    description="Chat backend for a tool-using coding agent with streamed answers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router, prefix="/api")

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def run() -> None:
    """Serve the app with uvicorn on the configured port."""
    uvicorn.run("webbot.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
