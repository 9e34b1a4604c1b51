"""Tool dispatch inside a turn: loop guard, eviction, dedupe, permissions and ordering."""

import asyncio
import json

import pytest
from langchain_core.messages import AIMessage, ToolMessage

from orchestrator.engine import TurnRequest
from orchestrator.events import EventType
from orchestrator.models.outcome import TurnOutcome
from orchestrator.nodes.tools import LOOP_SKIPPED_TEXT
from orchestrator.state import serialize_state
from orchestrator.tools.registry import create_tool
from tests._support.orchestrator_fakes import call, calls, mock_tool, route

PERF_ARGS = {"accountId": "1234567890", "range": "30d"}


def request(message="How did the account do?"):
    return TurnRequest(thread_id="thread-1", user_id="user-1", message=message)


async def tool_messages(engine):
    state = await engine.get_state("thread-1")
    return {m.tool_call_id: m for m in state["messages"] if isinstance(m, ToolMessage)}


class TestLoopGuard:
    """Repeating a call two agent turns later ends the turn."""

    @pytest.mark.asyncio
    async def test_repeat_two_turns_back_is_suppressed(self, make_engine):
        """The repeated call is not executed and the turn ends with the prior text."""
        perf = mock_tool("get_performance_data", {"spend": 10})
        overview = mock_tool("get_account_overview", {"accounts": ["1234567890"]})
        engine, model = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("get_performance_data", PERF_ARGS, call_id="p-1"),
                call("get_account_overview", {}, call_id="o-1", content="Checking the overview."),
                call("get_performance_data", PERF_ARGS, call_id="p-2"),
                AIMessage(content="never reached"),
            ],
            tools=[perf, overview],
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.LOOP_DETECTED
        assert result.response == "Checking the overview."
        assert perf.invoke_fn.call_count == 1
        assert overview.invoke_fn.call_count == 1
        assert model.calls == 4

        messages = await tool_messages(engine)
        assert messages["p-2"].content == LOOP_SKIPPED_TEXT
        assert messages["p-2"].status == "error"

    @pytest.mark.asyncio
    async def test_loop_without_prior_text_uses_fallback(self, make_engine):
        """With no earlier agent text the turn still answers the user."""
        perf = mock_tool("get_performance_data", {"spend": 10})
        overview = mock_tool("get_account_overview", {"accounts": []})
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("get_performance_data", PERF_ARGS, call_id="p-1"),
                call("get_account_overview", {}, call_id="o-1"),
                call("get_performance_data", PERF_ARGS, call_id="p-2"),
            ],
            tools=[perf, overview],
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.LOOP_DETECTED
        assert result.response
        assert "stuck" in result.response

    @pytest.mark.asyncio
    async def test_repeat_in_next_turn_is_not_a_loop(self, make_engine):
        """Only calls from the current turn are compared."""
        perf = mock_tool("get_performance_data", {"spend": 10})
        engine, model = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("get_performance_data", PERF_ARGS, call_id="p-1"),
                AIMessage(content="Spend was $10."),
                AIMessage(content="Spend was $10."),
                route("GOOGLE_ADS_AGENT", call_id="route-2"),
                call("get_performance_data", PERF_ARGS, call_id="p-2"),
                AIMessage(content="Still $10."),
                AIMessage(content="Still $10."),
            ],
            tools=[perf],
        )

        await engine.run_turn(request())
        result = await engine.run_turn(request("Check again"))

        assert result.outcome == TurnOutcome.COMPLETED
        assert result.response == "Still $10."


class TestEviction:
    """Oversized results are replaced by a preview and can be read back."""

    @pytest.mark.asyncio
    async def test_large_result_is_evicted_and_readable(self, make_engine):
        """The agent sees a preview; read_evicted_result returns the full payload."""
        payload = "date,clicks,spend\n" + "2024-01-01,10,12.50\n" * 1000
        assert len(payload) > 15000
        big = mock_tool("get_granular_analytics", payload)
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("get_granular_analytics", {"accountId": "1"}, call_id="big-1"),
                call("read_evicted_result", {"reference": "big-1"}, call_id="read-1"),
                AIMessage(content="Clicks were flat at 10 per day."),
                AIMessage(content="Clicks were flat at 10 per day."),
            ],
            tools=[big],
        )

        result = await engine.run_turn(request())

        messages = await tool_messages(engine)
        evicted = messages["big-1"]
        assert len(evicted.content) < len(payload)
        assert evicted.content.startswith(payload[:1000])
        assert "[Result truncated]" in evicted.content
        assert "read_evicted_result" in evicted.content
        assert evicted.additional_kwargs["is_evicted"] is True
        assert evicted.additional_kwargs["full_content_ref"] == "big-1"
        assert evicted.additional_kwargs["original_size"] == len(payload)

        assert messages["read-1"].content == payload

        completed = {
            e.data["call_id"]: e for e in result.events if e.type == EventType.TOOL_COMPLETED
        }
        assert completed["big-1"].data["evicted"] is True
        assert completed["read-1"].data["evicted"] is False

    @pytest.mark.asyncio
    async def test_unknown_reference_is_a_tool_error(self, make_engine):
        """Reading a reference that was never stored returns an error result."""
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("read_evicted_result", {"reference": "missing"}, call_id="read-1"),
                AIMessage(content="That data is no longer available."),
                AIMessage(content="That data is no longer available."),
            ]
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.COMPLETED
        message = (await tool_messages(engine))["read-1"]
        assert message.status == "error"
        assert json.loads(message.content)["code"] == "EVICTED_RESULT_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_cache_holds_the_preview_not_the_payload(self, make_engine):
        """Only the evicted preview is cached; a later hit returns it with its reference."""
        payload = "date,clicks,spend\n" + "2024-01-01,10,12.50\n" * 1000
        big = mock_tool("get_granular_analytics", payload)
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("get_granular_analytics", {"accountId": "1"}, call_id="big-1"),
                AIMessage(content="Clicks were flat."),
                AIMessage(content="Clicks were flat."),
                route("GOOGLE_ADS_AGENT", call_id="route-2"),
                call("get_granular_analytics", {"accountId": "1"}, call_id="big-2"),
                AIMessage(content="Still flat."),
                AIMessage(content="Still flat."),
            ],
            tools=[big],
        )

        await engine.run_turn(request())

        snapshot = serialize_state(await engine.get_state("thread-1"))
        cached = [entry["value"] for entry in snapshot["tool_cache"].values()]
        assert len(cached) == 1
        assert len(cached[0]) < 15000
        assert payload not in cached[0]
        assert "read_evicted_result" in cached[0]

        await engine.run_turn(request("Check again"))

        assert big.invoke_fn.call_count == 1
        messages = await tool_messages(engine)
        assert messages["big-2"].content == cached[0]
        assert "big-1" in messages["big-2"].content


class TestBatchDispatch:
    """Several calls issued in one agent turn."""

    @pytest.mark.asyncio
    async def test_identical_calls_in_one_batch_run_once(self, make_engine):
        """Duplicates within a batch share a single execution."""
        perf = mock_tool("get_performance_data", {"spend": 10})
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                calls(
                    ("get_performance_data", PERF_ARGS, "p-1"),
                    ("get_performance_data", dict(reversed(list(PERF_ARGS.items()))), "p-2"),
                ),
                AIMessage(content="Spend was $10."),
                AIMessage(content="Spend was $10."),
            ],
            tools=[perf],
        )

        await engine.run_turn(request())

        assert perf.invoke_fn.call_count == 1
        messages = await tool_messages(engine)
        assert messages["p-1"].content == messages["p-2"].content

    @pytest.mark.asyncio
    async def test_results_keep_call_order(self, make_engine):
        """A slow first call still comes back first."""

        async def slow(args, context):
            await asyncio.sleep(0.05)
            return "slow result"

        async def fast(args, context):
            return "fast result"

        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                calls(
                    ("get_unified_sources", {}, "slow-1"),
                    ("get_account_overview", {}, "fast-1"),
                ),
                AIMessage(content="Done."),
                AIMessage(content="Done."),
            ],
            tools=[
                create_tool("get_unified_sources", "sources", invoke_fn=slow),
                create_tool("get_account_overview", "overview", invoke_fn=fast),
            ],
        )

        await engine.run_turn(request())

        state = await engine.get_state("thread-1")
        ordered = [m.tool_call_id for m in state["messages"] if isinstance(m, ToolMessage)]
        assert ordered[-2:] == ["slow-1", "fast-1"]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_the_batch(self, make_engine):
        """A failing call yields an error result next to the successful one."""
        broken = mock_tool("get_unified_sources")
        broken.invoke_fn.side_effect = RuntimeError("upstream exploded")
        ok = mock_tool("get_account_overview", {"accounts": []})
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                calls(("get_unified_sources", {}, "s-1"), ("get_account_overview", {}, "o-1")),
                AIMessage(content="Only the overview worked."),
                AIMessage(content="Only the overview worked."),
            ],
            tools=[broken, ok],
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.COMPLETED
        messages = await tool_messages(engine)
        assert messages["s-1"].status == "error"
        assert json.loads(messages["s-1"].content)["code"] == "TOOL_EXECUTION_FAILED"
        assert messages["o-1"].status == "success"

    @pytest.mark.asyncio
    async def test_very_long_error_is_truncated_not_fatal(self, make_engine):
        """An exception with a huge message still becomes a bounded error result."""
        broken = mock_tool("get_unified_sources")
        broken.invoke_fn.side_effect = RuntimeError("x" * 3000)
        ok = mock_tool("get_account_overview", {"accounts": []})
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                calls(("get_unified_sources", {}, "s-1"), ("get_account_overview", {}, "o-1")),
                AIMessage(content="Only the overview worked."),
                AIMessage(content="Only the overview worked."),
            ],
            tools=[broken, ok],
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.COMPLETED
        assert result.response == "Only the overview worked."
        messages = await tool_messages(engine)
        error = json.loads(messages["s-1"].content)
        assert messages["s-1"].status == "error"
        assert error["code"] == "TOOL_EXECUTION_FAILED"
        assert len(error["message"]) <= 2048
        assert error["message"].endswith("... [truncated]")
        assert messages["o-1"].status == "success"


class TestToolPermissions:
    """Agents can only reach their own tools."""

    @pytest.mark.asyncio
    async def test_unknown_tool_returns_error_result(self, make_engine):
        """A made-up tool name is answered with an error, not ignored."""
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("delete_everything", {}, call_id="x-1"),
                AIMessage(content="I can't do that."),
                AIMessage(content="I can't do that."),
            ]
        )

        result = await engine.run_turn(request())

        assert result.outcome == TurnOutcome.COMPLETED
        error = json.loads((await tool_messages(engine))["x-1"].content)
        assert error["code"] == "UNKNOWN_TOOL"
        assert error["category"] == "unknown_tool"

    @pytest.mark.asyncio
    async def test_other_agents_tool_is_not_permitted(self, make_engine):
        """A registered tool outside the agent's subset is refused."""
        budget = mock_tool("update_meta_entity_budget", {"status": "updated"})
        engine, _ = make_engine(
            [
                route("GOOGLE_ADS_AGENT"),
                call("update_meta_entity_budget", {"entityId": "c-1"}, call_id="b-1"),
                AIMessage(content="That needs the Meta agent."),
                AIMessage(content="That needs the Meta agent."),
            ],
            tools=[budget],
        )

        await engine.run_turn(request())

        assert budget.invoke_fn.call_count == 0
        error = json.loads((await tool_messages(engine))["b-1"].content)
        assert error["code"] == "TOOL_NOT_PERMITTED"

    @pytest.mark.asyncio
    async def test_supervisor_answers_time_questions_directly(self, make_engine):
        """Utility tool results return to the supervisor without routing."""
        engine, model = make_engine(
            [
                call("get_current_time", {}, call_id="t-1"),
                AIMessage(content="It is just after noon."),
            ]
        )

        result = await engine.run_turn(request("What time is it?"))

        assert result.response == "It is just after noon."
        assert not any(e.type == EventType.ROUTING_DECISION for e in result.events)
        assert "CURRENT SYSTEM DATE AND TIME" in (await tool_messages(engine))["t-1"].content
        assert model.calls == 2


class TestResourceHandles:
    """Identifiers from earlier results are remembered for later prompts."""

    @pytest.mark.asyncio
    async def test_spreadsheet_id_reaches_later_prompts(self, make_engine):
        """A created sheet id shows up in the sheets agent prompt on the next turn."""
        create = mock_tool(
            "create_google_sheet", {"spreadsheetId": "sheet-42", "url": "https://x"}
        )
        engine, model = make_engine(
            [
                route("SHEETS_AGENT"),
                call("create_google_sheet", {"title": "Report"}, call_id="c-1"),
                AIMessage(content="Created sheet-42."),
                AIMessage(content="Created sheet-42."),
                route("SHEETS_AGENT", call_id="route-2"),
                AIMessage(content="Adding it to sheet-42."),
                AIMessage(content="Adding it to sheet-42."),
            ],
            tools=[create],
        )

        await engine.run_turn(request("Make me a report sheet"))
        await engine.run_turn(request("Add last week's data to it"))

        state = await engine.get_state("thread-1")
        assert state["resource_handles"]["spreadsheet_id"] == "sheet-42"
        sheets_prompt = model.prompts[5][0].content
        assert "Active Spreadsheet ID: sheet-42" in sheets_prompt
