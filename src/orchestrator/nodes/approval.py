"""Resume node for an approved sensitive action."""

import logging

from langchain_core.messages import AIMessage

from orchestrator.approval import APPROVED_ACTION_KEY
from orchestrator.state import SUPERVISOR, AgentState

logger = logging.getLogger(__name__)

APPROVAL_RESUME_NODE = "approval_resume"


async def approval_resume_node(state: AgentState) -> dict:
    """
    Re-issue the deferred action after the caller approved it.

    The parked tool calls are replayed as a fresh AI message so the tools node
    executes them exactly once and hands the results back to the requesting
    agent. The replay is marked so a cached result can never stand in for the
    approved action. Without parked calls the agent simply runs again with
    permission.
    """
    pending = state.get("pending_approval") or {}
    agent = pending.get("agent") or SUPERVISOR
    tool_calls = [
        {"id": call["id"], "name": call["name"], "args": call.get("args") or {}}
        for call in pending.get("tool_calls") or []
    ]
    logger.info(
        "Resuming approved action",
        extra={
            "thread_id": state.get("thread_id"),
            "node": APPROVAL_RESUME_NODE,
            "agent": agent,
            "tool_calls": len(tool_calls),
        },
    )

    update = {
        "permission_granted": True,
        "pending_approval": None,
        "approval_decision": None,
        "current_agent": agent,
    }
    if not tool_calls:
        return {**update, "next_node": agent}

    return {
        **update,
        "messages": [
            AIMessage(
                content="",
                tool_calls=tool_calls,
                additional_kwargs={APPROVED_ACTION_KEY: True},
            )
        ],
        "next_node": "tools",
    }
