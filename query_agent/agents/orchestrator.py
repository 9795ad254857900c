"""
Orchestration Loop - bounded model <-> tool round trips.

Architecture:
  state -> model turn -> [tool calls fan-out in parallel] -> tool results
        -> model turn -> ... -> final text

Each model turn counts as one round. The loop stops on the first turn that
requests no tools, or when the state's round budget is spent. Tool calls of
a single turn run concurrently; their results are attached in the order the
model asked for them, once all of them are back.
"""
from __future__ import annotations

import asyncio
from typing import List, Mapping, Optional, Protocol

import structlog

from ..errors import ToolReportedError
from ..models import (
    ModelTurn,
    RemoteTool,
    RoundTripState,
    ToolCallOptions,
    ToolInvocation,
    ToolResult,
)

logger = structlog.get_logger(__name__)


class ToolCallingModel(Protocol):
    async def generate(self, state: RoundTripState, tools: Mapping[str, RemoteTool]) -> ModelTurn:
        ...


class OrchestrationLoop:
    """
    Drives a tool-calling model through one request's conversation.

    Usage:
        loop = OrchestrationLoop(GeminiClient(settings))
        state = RoundTripState.start(system_prompt, prompt, max_rounds=10)
        text = await loop.run(state, tools)
    """

    def __init__(self, model: ToolCallingModel, tool_timeout: Optional[float] = None):
        self.model = model
        self.tool_timeout = tool_timeout

    async def run(self, state: RoundTripState, tools: Mapping[str, RemoteTool]) -> str:
        """Advance `state` until the model answers without tools.

        Can be called again on the same state (e.g. after appending a
        corrective user turn); the round budget is shared across calls.

        Returns the text of the last model turn, which is empty when the
        budget ran out mid tool-use.
        """
        while not state.exhausted:
            turn = await self.model.generate(state, tools)
            state.add_model(turn)

            logger.info(
                "model_turn",
                round=state.rounds,
                tool_calls=[call.name for call in turn.tool_calls],
                text_chars=len(turn.text),
            )

            if not turn.tool_calls:
                return turn.text

            results = await self._dispatch_all(turn.tool_calls, tools)
            state.add_tool_results(results)

        logger.warning("round_limit_reached", max_rounds=state.max_rounds)
        return _last_text(state)

    async def _dispatch_all(
        self,
        calls: List[ToolInvocation],
        tools: Mapping[str, RemoteTool],
    ) -> List[ToolResult]:
        outcomes = await asyncio.gather(
            *(self._dispatch(call, tools) for call in calls),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def _dispatch(self, call: ToolInvocation, tools: Mapping[str, RemoteTool]) -> ToolResult:
        tool = tools.get(call.name)
        if tool is None:
            logger.warning("unknown_tool", tool=call.name, available=sorted(tools))
            return ToolResult(
                name=call.name,
                call_id=call.call_id,
                output=f"Tool '{call.name}' does not exist. Available tools: {', '.join(sorted(tools))}",
                is_error=True,
            )

        logger.info("tool_called", tool=call.name, args=call.arguments, call_id=call.call_id)
        options = ToolCallOptions(call_id=call.call_id, timeout=self.tool_timeout)
        try:
            output = await tool.execute(call.arguments, options)
        except ToolReportedError as exc:
            logger.info("tool_reported_error", tool=call.name, error=str(exc.detail)[:300])
            return ToolResult(name=call.name, call_id=call.call_id, output=exc.detail, is_error=True)

        return ToolResult(name=call.name, call_id=call.call_id, output=output)


def _last_text(state: RoundTripState) -> str:
    for turn in reversed(state.turns):
        if isinstance(turn, ModelTurn):
            return turn.text
    return ""
