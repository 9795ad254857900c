"""
Data model for the query pipeline.

Conversation state is plain dataclasses (mutated in place by the loop);
request bodies and result payloads are Pydantic models.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class OutputMode(str, Enum):
    """Shape of the answer the caller wants."""
    TABLE = "table"
    CHART = "chart"

    def __str__(self) -> str:
        return self.value


# ── Tools ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ToolCallOptions:
    """Execution options forwarded untouched to the remote tool."""
    call_id: str
    timeout: Optional[float] = None


ToolExecutor = Callable[[Optional[Dict[str, Any]], ToolCallOptions], Awaitable[Any]]


@dataclass(frozen=True)
class RemoteTool:
    """A named remote capability the model can invoke."""
    name: str
    description: str
    parameters: Dict[str, Any]
    execute: ToolExecutor


@dataclass
class ToolInvocation:
    """A tool call requested by the model. `arguments` may be None."""
    name: str
    arguments: Optional[Dict[str, Any]]
    call_id: str


@dataclass
class ToolResult:
    name: str
    call_id: str
    output: Any
    is_error: bool = False


# ── Conversation ─────────────────────────────────────────────────

@dataclass
class UserTurn:
    text: str


@dataclass
class ModelTurn:
    """One model reply. `raw` keeps the provider-native content for replay."""
    text: str
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    raw: Any = None


@dataclass
class ToolTurn:
    results: List[ToolResult]


Turn = Union[UserTurn, ModelTurn, ToolTurn]


@dataclass
class RoundTripState:
    """Accumulated conversation for one request.

    `rounds` counts model turns; it only grows and never passes `max_rounds`.
    """
    system: str
    turns: List[Turn] = field(default_factory=list)
    rounds: int = 0
    max_rounds: int = 10

    @classmethod
    def start(cls, system: str, prompt: str, max_rounds: int = 10) -> "RoundTripState":
        return cls(system=system, turns=[UserTurn(prompt)], max_rounds=max_rounds)

    @property
    def exhausted(self) -> bool:
        return self.rounds >= self.max_rounds

    @property
    def tool_calls(self) -> List[ToolInvocation]:
        return [call for turn in self.turns if isinstance(turn, ModelTurn) for call in turn.tool_calls]

    def add_user(self, text: str) -> None:
        self.turns.append(UserTurn(text))

    def add_model(self, turn: ModelTurn) -> None:
        if self.exhausted:
            raise RuntimeError(f"round limit {self.max_rounds} already reached")
        self.turns.append(turn)
        self.rounds += 1

    def add_tool_results(self, results: List[ToolResult]) -> None:
        self.turns.append(ToolTurn(results))


# ── HTTP request ─────────────────────────────────────────────────

class CompletionRequest(BaseModel):
    prompt: str = Field(..., min_length=1, description="Natural-language question")
    type: OutputMode = Field(..., description="table | chart")

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be blank")
        return value


# ── Result payloads ──────────────────────────────────────────────

class TableResult(BaseModel):
    success: Literal[True]
    type: Literal["table"]
    data: List[Any]
    columns: List[str]


class ChartResult(BaseModel):
    success: Literal[True]
    type: Literal["chart"]
    data: List[Any]
    columns: List[str]
    chartType: Literal["bar", "line", "pie"]
    xAxis: str
    yAxis: str


class FailureResult(BaseModel):
    success: Literal[False]
    error: str


ResultPayload = Union[TableResult, ChartResult, FailureResult]

GENERIC_ERROR_MESSAGE = "Something went wrong with your query. Please try again."
