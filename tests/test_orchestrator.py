"""
Tests for the orchestration loop.
"""

import asyncio
import json

import pytest

from query_agent.agents._mcp_tools import wrap_tool
from query_agent.agents.orchestrator import OrchestrationLoop
from query_agent.errors import MCPToolError, ProviderError, ToolReportedError
from query_agent.models import ModelTurn, RoundTripState, ToolTurn

from tests.conftest import (
    QUERY_TOOL,
    SCHEMA_TOOL,
    USERS_ROWS,
    ScriptedModel,
    call,
    make_tool,
    text_turn,
    tool_turn,
)

TABLE_ANSWER = {"success": True, "type": "table", "data": USERS_ROWS, "columns": ["id", "name", "email"]}


def new_state(max_rounds=10):
    return RoundTripState.start("system instructions", "show me all users", max_rounds=max_rounds)


def wrapped(tools):
    return {name: wrap_tool(tool) for name, tool in tools.items()}


class TestTermination:

    async def test_no_tool_calls_ends_after_one_turn(self, db_tools):
        model = ScriptedModel([text_turn(TABLE_ANSWER)])
        state = new_state()

        text = await OrchestrationLoop(model).run(state, wrapped(db_tools))

        assert json.loads(text) == TABLE_ANSWER
        assert model.calls == 1
        assert state.rounds == 1

    async def test_never_exceeds_round_limit(self, db_tools):
        model = ScriptedModel([tool_turn(call(SCHEMA_TOOL), text="still thinking")], repeat_last=True)
        state = new_state(max_rounds=10)

        text = await OrchestrationLoop(model).run(state, wrapped(db_tools))

        assert model.calls == 10
        assert state.rounds == 10
        assert text == "still thinking"
        assert len(db_tools[SCHEMA_TOOL].execute.calls) == 10

    async def test_round_budget_shared_across_runs(self, db_tools):
        model = ScriptedModel([tool_turn(call(SCHEMA_TOOL))], repeat_last=True)
        state = new_state(max_rounds=3)
        loop = OrchestrationLoop(model)

        await loop.run(state, wrapped(db_tools))
        state.add_user("try again")
        text = await loop.run(state, wrapped(db_tools))

        assert model.calls == 3
        assert text == ""

    def test_state_rejects_turns_past_limit(self):
        state = new_state(max_rounds=1)
        state.add_model(ModelTurn(text="x"))
        with pytest.raises(RuntimeError):
            state.add_model(ModelTurn(text="y"))


class TestToolDispatch:

    async def test_discovery_then_query_then_answer(self, db_tools):
        model = ScriptedModel([
            tool_turn(call(SCHEMA_TOOL)),
            tool_turn(call(QUERY_TOOL, {"sql": "SELECT * FROM users"})),
            text_turn(TABLE_ANSWER),
        ])
        state = new_state()

        await OrchestrationLoop(model, tool_timeout=7.0).run(state, wrapped(db_tools))

        assert model.calls == 3
        assert [c.name for c in state.tool_calls] == [SCHEMA_TOOL, QUERY_TOOL]
        assert db_tools[SCHEMA_TOOL].execute.calls == [{}]
        assert db_tools[QUERY_TOOL].execute.calls == [{"sql": "SELECT * FROM users"}]
        assert db_tools[QUERY_TOOL].execute.options[0].timeout == 7.0
        assert model.seen_tool_results[1].results[0].output == USERS_ROWS

    async def test_same_turn_tools_run_concurrently_and_keep_request_order(self):
        second_started = asyncio.Event()
        completion_order = []

        async def slow(args):
            # Only finishes once the other call has started
            await second_started.wait()
            await asyncio.sleep(0.01)
            completion_order.append("slow")
            return "slow-result"

        async def fast(args):
            second_started.set()
            completion_order.append("fast")
            return "fast-result"

        tools = {"slow": make_tool("slow", slow), "fast": make_tool("fast", fast)}
        model = ScriptedModel([
            tool_turn(call("slow", call_id="a"), call("fast", call_id="b")),
            text_turn("done"),
        ])
        state = new_state()

        await asyncio.wait_for(OrchestrationLoop(model).run(state, wrapped(tools)), timeout=2)

        assert completion_order == ["fast", "slow"]
        results = model.seen_tool_results[0].results
        assert [(r.call_id, r.output) for r in results] == [("a", "slow-result"), ("b", "fast-result")]

    async def test_reported_tool_error_goes_back_to_model(self, schema_tool):
        attempts = []

        def query(args):
            attempts.append(args["sql"])
            if len(attempts) == 1:
                raise ToolReportedError(QUERY_TOOL, 'column "nme" does not exist')
            return USERS_ROWS

        tools = {SCHEMA_TOOL: schema_tool, QUERY_TOOL: make_tool(QUERY_TOOL, query)}
        model = ScriptedModel([
            tool_turn(call(QUERY_TOOL, {"sql": "SELECT nme FROM users"})),
            tool_turn(call(QUERY_TOOL, {"sql": "SELECT name FROM users"})),
            text_turn(TABLE_ANSWER),
        ])

        text = await OrchestrationLoop(model).run(new_state(), wrapped(tools))

        first, second = model.seen_tool_results
        assert first.results[0].is_error
        assert first.results[0].output == 'column "nme" does not exist'
        assert not second.results[0].is_error
        assert json.loads(text)["success"] is True

    async def test_unknown_tool_reported_to_model(self, db_tools):
        model = ScriptedModel([tool_turn(call("dropDatabase")), text_turn(TABLE_ANSWER)])

        await OrchestrationLoop(model).run(new_state(), wrapped(db_tools))

        result = model.seen_tool_results[0].results[0]
        assert result.is_error
        assert "dropDatabase" in result.output
        assert QUERY_TOOL in result.output


class TestAbort:

    async def test_transport_error_aborts_after_sibling_calls_settle(self, schema_tool):
        finished = []

        async def sibling(args):
            await asyncio.sleep(0.01)
            finished.append(True)
            return "ok"

        def broken(args):
            raise MCPToolError("stream closed")

        tools = {"sibling": make_tool("sibling", sibling), QUERY_TOOL: make_tool(QUERY_TOOL, broken)}
        model = ScriptedModel([tool_turn(call(QUERY_TOOL), call("sibling")), text_turn("unreachable")])
        state = new_state()

        with pytest.raises(MCPToolError):
            await OrchestrationLoop(model).run(state, wrapped(tools))

        assert finished == [True]
        assert model.calls == 1
        assert not any(isinstance(t, ToolTurn) for t in state.turns)

    async def test_provider_error_propagates(self, db_tools):
        model = ScriptedModel([tool_turn(call(SCHEMA_TOOL)), ProviderError("401 API key not valid")])

        with pytest.raises(ProviderError):
            await OrchestrationLoop(model).run(new_state(), wrapped(db_tools))

        assert model.calls == 2
