"""Tests for supervisor and specialist prompt and schema helpers."""

from datetime import datetime, timezone

from langchain_core.messages import HumanMessage

from orchestrator.agents.catalog import DEFAULT_SPECIALISTS, FINISH, GOOGLE_ADS_AGENT, SHEETS_AGENT
from orchestrator.nodes.specialist import allowed_tools, build_specialist_prompt
from orchestrator.nodes.supervisor import build_supervisor_prompt, route_tool_schema


class TestRouteToolSchema:
    """The route capability enumerates every specialist plus FINISH."""

    def test_enum_lists_route_names(self):
        schema = route_tool_schema(DEFAULT_SPECIALISTS)

        params = schema["function"]["parameters"]
        assert schema["function"]["name"] == "route"
        assert params["properties"]["next"]["enum"] == [
            "GOOGLE_ADS_AGENT",
            "META_ADS_AGENT",
            "SHEETS_AGENT",
            FINISH,
        ]
        assert params["required"] == ["next", "reasoning"]


class TestSupervisorPrompt:
    def test_lists_specialists_and_invoked(self):
        prompt = build_supervisor_prompt(DEFAULT_SPECIALISTS, ["google_ads_agent"])

        assert "- GOOGLE_ADS_AGENT:" in prompt
        assert "Agents already run this turn: google_ads_agent" in prompt

    def test_nothing_invoked(self):
        prompt = build_supervisor_prompt(DEFAULT_SPECIALISTS, [])

        assert "Agents already run this turn: none" in prompt


class TestSpecialistPrompt:
    NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)

    def test_includes_current_time(self):
        prompt = build_specialist_prompt(GOOGLE_ADS_AGENT, {"messages": []}, self.NOW)

        assert prompt.startswith(GOOGLE_ADS_AGENT.prompt)
        assert "Current date/time (UTC): 2024-05-01T12:30:00+00:00" in prompt
        assert "KNOWN RESOURCES" not in prompt

    def test_includes_recovered_handles(self):
        state = {
            "resource_handles": {"spreadsheet_id": "sheet-9"},
            "messages": [HumanMessage(content="Use account 123-456-7890 please")],
        }

        prompt = build_specialist_prompt(SHEETS_AGENT, state, self.NOW)

        assert "Active Spreadsheet ID: sheet-9" in prompt
        assert "Account ID mentioned in this conversation: 123-456-7890" in prompt

    def test_allowed_tools_add_evicted_reader(self):
        tools = allowed_tools(GOOGLE_ADS_AGENT)

        assert tools[-1] == "read_evicted_result"
        assert set(GOOGLE_ADS_AGENT.tool_names) <= set(tools)
