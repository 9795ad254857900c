"""
Query Agent - FastAPI entry point.

Single completion endpoint backed by Gemini function calling over remote
MCP database tools. Port 8000 by default.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .agents.completion import CompletionService
from .config import Settings, get_settings
from .handlers.rest_handler import request_validation_handler, router as rest_router
from .llm.gemini_client import GeminiClient
from .utils.logger import configure_logging

logger = structlog.get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[CompletionService] = None,
) -> FastAPI:
    """Build the app. Provider and tool settings are resolved once, here."""
    settings = settings or get_settings()
    configure_logging(settings=settings, service_name=settings.service_name)

    if service is None:
        service = CompletionService(settings, GeminiClient(settings))

    # ── Lifespan ─────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "service_starting",
            model=settings.llm_model,
            tool_server=settings.mcp_server_url,
            max_rounds=settings.max_rounds,
        )
        if not settings.api_key:
            logger.warning("google_api_key_missing")

        yield  # ── app is running ──

        logger.info("service_stopped")

    # ── App ──────────────────────────────────────────────────────

    app = FastAPI(
        title="Query Agent",
        description="Natural-language database queries answered as table or chart JSON",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.completion_service = service

    # ── CORS ─────────────────────────────────────────────────────

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── REST routes ──────────────────────────────────────────────

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.include_router(rest_router)

    return app


# ── Run ──────────────────────────────────────────────────────────

def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "query_agent.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
