"""Tests for approval sentinel handling and the resume node."""

import pytest
from langchain_core.messages import AIMessage
from langgraph.graph import END

from orchestrator.approval import (
    DEFAULT_APPROVAL_PROMPT,
    LEGACY_SHEET_SENTINEL,
    PERMISSION_SENTINEL,
    ApprovalDecision,
    contains_sentinel,
    enforce_approval,
    is_approved_replay,
    parse_decision,
    paused_update,
    strip_sentinel,
)
from orchestrator.errors import ConfigurationError, PermissionPendingError
from orchestrator.models.outcome import TurnOutcome
from orchestrator.nodes.approval import approval_resume_node

BUDGET_CALL = {"name": "update_meta_entity_budget", "args": {"dailyBudget": 50}, "id": "b-1"}


class TestSentinel:
    """Detection and removal of the reserved marker."""

    def test_contains_sentinel(self):
        assert contains_sentinel(f"{PERMISSION_SENTINEL} do it")
        assert contains_sentinel(f"ok {LEGACY_SHEET_SENTINEL}")
        assert not contains_sentinel("[SYSTEM_ACTION:SOMETHING_ELSE]")
        assert not contains_sentinel("")

    def test_strip_sentinel(self):
        assert strip_sentinel(f"{PERMISSION_SENTINEL}  Delete the sheet?  ") == "Delete the sheet?"


class TestEnforceApproval:
    """Sentinel replies pause unless permission was granted."""

    def test_plain_reply_passes(self):
        enforce_approval(AIMessage(content="All good."), "meta_ads_agent", False)

    def test_granted_permission_passes(self):
        enforce_approval(AIMessage(content=PERMISSION_SENTINEL), "meta_ads_agent", True)

    def test_sentinel_reply_raises_with_deferred_calls(self):
        response = AIMessage(
            content=f"{PERMISSION_SENTINEL} Raise the budget?", tool_calls=[BUDGET_CALL]
        )

        with pytest.raises(PermissionPendingError) as exc_info:
            enforce_approval(response, "meta_ads_agent", False)

        pending = exc_info.value
        assert pending.agent == "meta_ads_agent"
        assert pending.text == "Raise the budget?"
        assert pending.tool_calls[0]["id"] == "b-1"
        assert pending.tool_calls[0]["args"] == {"dailyBudget": 50}

    def test_bare_sentinel_uses_default_prompt(self):
        with pytest.raises(PermissionPendingError) as exc_info:
            enforce_approval(AIMessage(content=PERMISSION_SENTINEL), "sheets_agent", False)

        assert exc_info.value.text == DEFAULT_APPROVAL_PROMPT


class TestPausedUpdate:
    """State update produced on pause."""

    def test_paused_update_parks_the_action(self):
        response = AIMessage(content="ignored", tool_calls=[BUDGET_CALL], id="ai-1")
        pending = PermissionPendingError("meta_ads_agent", "Raise the budget?", [BUDGET_CALL])

        update = paused_update(pending, response)

        stored = update["messages"][0]
        assert stored.id == "ai-1"
        assert stored.content == "Raise the budget?"
        assert not stored.tool_calls
        assert update["pending_approval"] == {
            "agent": "meta_ads_agent",
            "content": "Raise the budget?",
            "tool_calls": [BUDGET_CALL],
        }
        assert update["outcome"] == TurnOutcome.APPROVAL_REQUIRED
        assert update["next_node"] == END


class TestParseDecision:
    """Caller decisions are normalized."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, None),
            ("approved", ApprovalDecision.APPROVED),
            (" Rejected ", ApprovalDecision.REJECTED),
            (ApprovalDecision.APPROVED, ApprovalDecision.APPROVED),
        ],
    )
    def test_valid_values(self, value, expected):
        assert parse_decision(value) == expected

    def test_invalid_value_raises(self):
        with pytest.raises(ConfigurationError):
            parse_decision("yes please")


class TestApprovalResumeNode:
    """Replay of the parked action."""

    @pytest.mark.asyncio
    async def test_replays_deferred_calls_through_tools(self):
        state = {
            "thread_id": "t",
            "pending_approval": {
                "agent": "meta_ads_agent",
                "content": "Raise the budget?",
                "tool_calls": [BUDGET_CALL],
            },
        }

        update = await approval_resume_node(state)

        assert update["permission_granted"] is True
        assert update["pending_approval"] is None
        assert update["current_agent"] == "meta_ads_agent"
        assert update["next_node"] == "tools"
        replay = update["messages"][0]
        assert [c["id"] for c in replay.tool_calls] == ["b-1"]
        assert is_approved_replay(replay)
        assert replay.tool_calls[0]["args"] == {"dailyBudget": 50}

    @pytest.mark.asyncio
    async def test_without_calls_returns_to_agent(self):
        state = {"pending_approval": {"agent": "sheets_agent", "content": "ok", "tool_calls": []}}

        update = await approval_resume_node(state)

        assert update["next_node"] == "sheets_agent"
        assert "messages" not in update
