"""
Gemini Client for the Query Agent

Translates the provider-neutral RoundTripState into Gemini contents, sends
one turn with the remote tools declared as functions, and parses the reply
back into a ModelTurn. Automatic function calling is disabled: the
orchestration loop owns the turn protocol.
"""

from typing import Any, Dict, List, Mapping, Optional

import structlog
from google import genai
from google.genai import types

from ..agents._llm_retry import invoke_with_retry
from ..config import Settings
from ..errors import ProviderError
from ..models import ModelTurn, RemoteTool, RoundTripState, ToolInvocation, ToolTurn, UserTurn

logger = structlog.get_logger(__name__)


class GeminiClient:
    """
    Function-calling client for Gemini.

    Usage:
        model = GeminiClient(settings)
        turn = await model.generate(state, tools)
    """

    def __init__(self, settings: Settings, client: Optional[genai.Client] = None):
        self.settings = settings
        self.model = settings.llm_model
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            api_key = self.settings.api_key
            if not api_key:
                raise ProviderError("GOOGLE_API_KEY is not configured")
            self._client = genai.Client(api_key=api_key)
        return self._client

    # ── Request building ─────────────────────────────────────────

    @staticmethod
    def build_tools(tools: Mapping[str, RemoteTool]) -> List[types.Tool]:
        """Declare remote tools as Gemini functions using their JSON schemas."""
        if not tools:
            return []
        declarations = [
            types.FunctionDeclaration(
                name=tool.name,
                description=tool.description,
                parameters_json_schema=tool.parameters or {"type": "object", "properties": {}},
            )
            for tool in tools.values()
        ]
        return [types.Tool(function_declarations=declarations)]

    @staticmethod
    def build_contents(state: RoundTripState) -> List[types.Content]:
        contents: List[types.Content] = []
        for turn in state.turns:
            if isinstance(turn, UserTurn):
                contents.append(types.Content(role="user", parts=[types.Part(text=turn.text)]))
            elif isinstance(turn, ModelTurn):
                content = _model_content(turn)
                # Gemini rejects empty model contents
                if content.parts:
                    contents.append(content)
            elif isinstance(turn, ToolTurn):
                parts = [
                    types.Part(function_response=types.FunctionResponse(
                        id=result.call_id,
                        name=result.name,
                        response={"error": result.output} if result.is_error else {"result": result.output},
                    ))
                    for result in turn.results
                ]
                contents.append(types.Content(role="user", parts=parts))
        return contents

    def build_config(self, state: RoundTripState, tools: Mapping[str, RemoteTool]) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=state.system,
            tools=self.build_tools(tools) or None,
            temperature=self.settings.llm_temperature,
            max_output_tokens=self.settings.llm_max_output_tokens,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )

    # ── Turn ─────────────────────────────────────────────────────

    async def generate(self, state: RoundTripState, tools: Mapping[str, RemoteTool]) -> ModelTurn:
        """Run one inference call for the current state."""
        client = self._get_client()
        contents = self.build_contents(state)
        config = self.build_config(state, tools)

        try:
            response = await invoke_with_retry(
                lambda: client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=config,
                ),
                max_retries=self.settings.llm_max_retries,
                max_wait=self.settings.llm_max_wait,
            )
        except Exception as exc:
            raise ProviderError(f"Gemini call failed: {exc}") from exc

        return self.parse_response(response, round_index=state.rounds)

    @staticmethod
    def parse_response(response: Any, round_index: int = 0) -> ModelTurn:
        if not response.candidates:
            feedback = getattr(response, "prompt_feedback", None)
            raise ProviderError(f"Gemini returned no candidates (feedback={feedback})")

        candidate = response.candidates[0]
        content = candidate.content
        if content is None or not content.parts:
            logger.warning("empty_model_content", finish_reason=str(candidate.finish_reason))
            return ModelTurn(text="", raw=content)

        text_parts: List[str] = []
        calls: List[ToolInvocation] = []
        for part in content.parts:
            if part.function_call:
                fc = part.function_call
                args: Optional[Dict[str, Any]] = dict(fc.args) if fc.args is not None else None
                calls.append(ToolInvocation(
                    name=fc.name,
                    arguments=args,
                    call_id=fc.id or f"call_{round_index}_{len(calls)}",
                ))
            elif part.text and not part.thought:
                text_parts.append(part.text)

        return ModelTurn(text="".join(text_parts), tool_calls=calls, raw=content)


def _model_content(turn: ModelTurn) -> types.Content:
    if isinstance(turn.raw, types.Content):
        return turn.raw
    parts: List[types.Part] = []
    if turn.text:
        parts.append(types.Part(text=turn.text))
    for call in turn.tool_calls:
        parts.append(types.Part(function_call=types.FunctionCall(
            id=call.call_id,
            name=call.name,
            args=call.arguments,
        )))
    return types.Content(role="model", parts=parts)
