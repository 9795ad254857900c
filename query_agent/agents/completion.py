"""
Completion Service - one natural-language prompt in, one result JSON out.

Pipeline per request:
  1. Compose the system instructions for the output mode
  2. Open the MCP tool session and list its tools
  3. Run the orchestration loop
  4. Validate the final text (one repair turn if it is malformed)
  5. Close the session (always, exactly once)

The whole pipeline runs under a wall-clock timeout; cancellation reaches
every await, and the session context still closes the connection.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from ..config import Settings
from ..errors import MalformedOutputError
from ..llm.prompts import OUTPUT_REPAIR_PROMPT, compose_system_prompt
from ..models import OutputMode, RoundTripState
from ._mcp_tools import ToolSession
from .orchestrator import OrchestrationLoop, ToolCallingModel
from .validator import ResponseValidator

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], ToolSession]


class CompletionService:
    """
    Usage:
        service = CompletionService(settings, GeminiClient(settings))
        body = await service.complete("show me all users", OutputMode.TABLE)
    """

    def __init__(
        self,
        settings: Settings,
        model: ToolCallingModel,
        session_factory: Optional[SessionFactory] = None,
        validator: Optional[ResponseValidator] = None,
    ):
        self.settings = settings
        self.loop = OrchestrationLoop(model, tool_timeout=settings.tool_timeout_seconds)
        self.session_factory = session_factory or (lambda: ToolSession.from_settings(settings))
        self.validator = validator or ResponseValidator()

    async def complete(self, prompt: str, mode: OutputMode) -> str:
        """Return the response body for `prompt`.

        Raises asyncio.TimeoutError past `request_timeout_seconds`, and
        QueryAgentError subclasses for everything the pipeline can fail on.
        """
        return await asyncio.wait_for(
            self._complete(prompt, OutputMode(mode)),
            timeout=self.settings.request_timeout_seconds,
        )

    async def _complete(self, prompt: str, mode: OutputMode) -> str:
        start_time = time.time()
        system = compose_system_prompt(
            mode,
            schema_tool=self.settings.schema_tool_name,
            query_tool=self.settings.query_tool_name,
        )
        state = RoundTripState.start(system, prompt, max_rounds=self.settings.max_rounds)

        logger.info("completion_started", mode=str(mode), prompt=prompt[:100])

        async with self.session_factory() as session:
            tools = await session.list_tools()
            text = await self.loop.run(state, tools)
            body = await self._validated(text, mode, state, tools)

        logger.info(
            "completion_finished",
            mode=str(mode),
            rounds=state.rounds,
            tools_used=[call.name for call in state.tool_calls],
            elapsed_ms=int((time.time() - start_time) * 1000),
        )
        return body

    async def _validated(self, text: str, mode: OutputMode, state: RoundTripState, tools) -> str:
        repairs = 0
        while True:
            try:
                return self.validator.validate(text, mode)
            except MalformedOutputError as exc:
                if repairs >= self.settings.output_repair_attempts or state.exhausted:
                    raise
                repairs += 1
                logger.warning("output_repair", reason=str(exc), round=state.rounds, attempt=repairs)
                state.add_user(OUTPUT_REPAIR_PROMPT)
                text = await self.loop.run(state, tools)

    async def describe_tools(self) -> List[Dict[str, Any]]:
        """List the remote tools (name and description) through a short-lived session."""
        async with self.session_factory() as session:
            tools = await session.list_tools()
        return [{"name": t.name, "description": t.description} for t in tools.values()]
