"""
REST Handler - FastAPI endpoints for natural-language queries.

Endpoints:
  POST /api/completion   -> Run a prompt through the tool-calling pipeline
  GET  /api/health       -> Service health check
  GET  /api/tools        -> List the remote MCP tools
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..agents.completion import CompletionService
from ..models import GENERIC_ERROR_MESSAGE, CompletionRequest

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api", tags=["query-agent"])


# ── Response models ──────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    model: str
    tool_server: str


class ToolInfo(BaseModel):
    name: str
    description: str


# ── Helpers ──────────────────────────────────────────────────────

def get_service(request: Request) -> CompletionService:
    return request.app.state.completion_service


def failure_response(status_code: int, message: str = GENERIC_ERROR_MESSAGE) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies get a 400 in the same failure shape as everything else."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "body"
        reason = f"{field}: {first.get('msg', 'invalid')}"
    else:
        reason = "malformed body"
    logger.info("invalid_request", path=request.url.path, reason=reason)
    return failure_response(400, f"Invalid request: {reason}")


# ── Endpoints ────────────────────────────────────────────────────

@router.post("/completion")
async def completion(
    request: CompletionRequest,
    service: CompletionService = Depends(get_service),
) -> Response:
    """Answer a prompt with table or chart JSON, exactly as the model wrote it."""
    with structlog.contextvars.bound_contextvars(request_id=uuid.uuid4().hex[:12]):
        try:
            body = await service.complete(request.prompt, request.type)
        except asyncio.TimeoutError:
            logger.error(
                "completion_timeout",
                timeout_seconds=service.settings.request_timeout_seconds,
            )
            return failure_response(500)
        except Exception:
            logger.exception("completion_failed", mode=str(request.type))
            return failure_response(500)

    return Response(content=body, status_code=200, media_type="application/json")


@router.get("/health", response_model=HealthResponse)
async def health_check(service: CompletionService = Depends(get_service)) -> HealthResponse:
    """Service health check."""
    settings = service.settings
    return HealthResponse(
        status="healthy" if settings.api_key else "degraded",
        service=settings.service_name,
        version=__version__,
        model=settings.llm_model,
        tool_server=settings.mcp_server_url,
    )


@router.get("/tools", response_model=list[ToolInfo])
async def list_tools(service: CompletionService = Depends(get_service)) -> Any:
    """List the tools the remote MCP server exposes."""
    try:
        tools = await service.describe_tools()
    except Exception:
        logger.exception("list_tools_failed")
        return failure_response(502)
    return [ToolInfo(**tool) for tool in tools]
