"""
Pytest configuration and fixtures for Query Agent tests.

External systems are replaced by in-process fakes:
- ScriptedModel plays back a fixed list of model turns
- FakeToolSession stands in for the MCP connection
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Union

import httpx
import pytest

from query_agent.agents._mcp_tools import wrap_tool
from query_agent.agents.completion import CompletionService
from query_agent.config import Settings
from query_agent.errors import MCPToolError
from query_agent.main import create_app
from query_agent.models import ModelTurn, RemoteTool, RoundTripState, ToolInvocation, ToolTurn

SCHEMA_TOOL = "getTablesInfoPostgres"
QUERY_TOOL = "queryDatabasePostgres"

USERS_SCHEMA = {
    "users": {
        "columns": [
            {"name": "id", "type": "integer"},
            {"name": "name", "type": "text"},
            {"name": "email", "type": "text"},
        ]
    }
}

USERS_ROWS = [
    {"id": 1, "name": "Ada", "email": "ada@example.com"},
    {"id": 2, "name": "Linus", "email": "linus@example.com"},
]


def call(name: str, arguments: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> ToolInvocation:
    return ToolInvocation(name=name, arguments=arguments, call_id=call_id or f"{name}-id")


def tool_turn(*calls: ToolInvocation, text: str = "") -> ModelTurn:
    return ModelTurn(text=text, tool_calls=list(calls))


def text_turn(payload: Union[str, Dict[str, Any]]) -> ModelTurn:
    return ModelTurn(text=payload if isinstance(payload, str) else json.dumps(payload))


class ScriptedModel:
    """Returns scripted turns in order; items may be ModelTurn, Exception or callable(state)."""

    def __init__(self, script: List[Any], repeat_last: bool = False):
        self.script = list(script)
        self.repeat_last = repeat_last
        self.calls = 0
        self.systems: List[str] = []
        self.prompts: List[str] = []
        self.seen_tool_results: List[ToolTurn] = []

    async def generate(self, state: RoundTripState, tools) -> ModelTurn:
        self.calls += 1
        self.systems.append(state.system)
        self.prompts.append(state.turns[0].text)
        if state.turns and isinstance(state.turns[-1], ToolTurn):
            self.seen_tool_results.append(state.turns[-1])

        if len(self.script) == 1 and self.repeat_last:
            item = self.script[0]
        else:
            item = self.script.pop(0)

        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(state)
            if asyncio.iscoroutine(item):
                item = await item
        return item


class RecordingTool:
    """An async tool body that records every call it receives."""

    def __init__(self, handler: Callable[[Dict[str, Any]], Any]):
        self.handler = handler
        self.calls: List[Any] = []
        self.options: List[Any] = []

    async def __call__(self, args, options):
        self.calls.append(args)
        self.options.append(options)
        result = self.handler(args)
        if asyncio.iscoroutine(result):
            result = await result
        return result


def make_tool(name: str, handler: Callable[[Dict[str, Any]], Any]) -> RemoteTool:
    return RemoteTool(
        name=name,
        description=f"{name} test tool",
        parameters={"type": "object", "properties": {}},
        execute=RecordingTool(handler),
    )


class FakeToolSession:
    """Stands in for ToolSession; counts opens and closes."""

    def __init__(self, tools: Dict[str, RemoteTool], fail_connect: bool = False, fail_close: bool = False):
        self.raw_tools = tools
        self.fail_connect = fail_connect
        self.fail_close = fail_close
        self.open_count = 0
        self.close_count = 0

    async def __aenter__(self):
        self.open_count += 1
        if self.fail_connect:
            raise MCPToolError("cannot connect to MCP server at https://tools.invalid/sse")
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close_count += 1
        if self.fail_close:
            raise MCPToolError("error closing MCP connection: stream reset")

    async def list_tools(self) -> Dict[str, RemoteTool]:
        return {name: wrap_tool(tool) for name, tool in self.raw_tools.items()}


class SessionFactory:
    """Hands out one FakeToolSession per request and keeps them for assertions."""

    def __init__(self, tools: Dict[str, RemoteTool], fail_connect: bool = False, fail_close: bool = False):
        self.tools = tools
        self.fail_connect = fail_connect
        self.fail_close = fail_close
        self.sessions: List[FakeToolSession] = []

    def __call__(self) -> FakeToolSession:
        session = FakeToolSession(self.tools, fail_connect=self.fail_connect, fail_close=self.fail_close)
        self.sessions.append(session)
        return session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        google_api_key="test-key",
        llm_max_retries=2,
        llm_max_wait=1,
        log_format="text",
    )


@pytest.fixture
def schema_tool() -> RemoteTool:
    return make_tool(SCHEMA_TOOL, lambda args: USERS_SCHEMA)


@pytest.fixture
def query_tool() -> RemoteTool:
    return make_tool(QUERY_TOOL, lambda args: USERS_ROWS)


@pytest.fixture
def db_tools(schema_tool, query_tool) -> Dict[str, RemoteTool]:
    return {SCHEMA_TOOL: schema_tool, QUERY_TOOL: query_tool}


@pytest.fixture
def build_client(settings):
    """Factory: (model, session_factory, settings?) -> httpx.AsyncClient bound to the app."""

    def _build(model, sessions: SessionFactory, app_settings: Optional[Settings] = None) -> httpx.AsyncClient:
        cfg = app_settings or settings
        service = CompletionService(cfg, model, session_factory=sessions)
        app = create_app(cfg, service=service)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")

    return _build
