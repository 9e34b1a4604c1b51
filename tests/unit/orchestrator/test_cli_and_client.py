"""Tests for the chat CLI helpers and the model client factory."""

from unittest.mock import MagicMock, patch

import pytest

from orchestrator.cli import format_event, parse_input
from orchestrator.errors import ConfigurationError
from orchestrator.events import EventType, StreamEvent
from orchestrator.llm_client import get_llm_client


def event(event_type, node=None, **data):
    return StreamEvent(type=event_type, thread_id="t", seq=0, node=node, data=data)


class TestParseInput:
    def test_approve(self):
        assert parse_input(" /approve ").approval_decision == "approved"

    def test_reject(self):
        assert parse_input("/reject").approval_decision == "rejected"

    def test_message(self):
        request = parse_input("How is spend?\n")

        assert request.message == "How is spend?"
        assert request.approval_decision is None


class TestFormatEvent:
    def test_text_delta(self):
        assert format_event(event(EventType.TEXT_DELTA, "supervisor", content="Hi")) == (
            "[supervisor] Hi"
        )

    def test_tool_completed_flags(self):
        rendered = format_event(
            event(EventType.TOOL_COMPLETED, tool="t", status="success", cached=True, evicted=False)
        )

        assert rendered == "   tool t success [cached]"

    def test_approval_prompt(self):
        rendered = format_event(event(EventType.APPROVAL_REQUIRED, message="Delete the sheet?"))

        assert "Delete the sheet?" in rendered
        assert "/approve" in rendered

    def test_turn_completed(self):
        assert format_event(event(EventType.TURN_COMPLETED, response="Done")) == "\nDone"


class TestGetLlmClient:
    def test_placeholder_key_is_rejected(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "<REPLACE_ME>")

        with patch("orchestrator.llm_client.load_dotenv"):
            with pytest.raises(ConfigurationError):
                get_llm_client()

    def test_builds_client_without_provider_retries(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        monkeypatch.setenv("LLM_MODEL", "gpt-4o-mini")
        fake_cls = MagicMock()

        with patch("langchain_openai.ChatOpenAI", fake_cls):
            get_llm_client(timeout=12)

        kwargs = fake_cls.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_retries"] == 0
        assert kwargs["timeout"] == 12
