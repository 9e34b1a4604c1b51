"""Human approval gate for sensitive actions.

An agent signals that it wants to perform a sensitive action by including a
reserved sentinel in its reply. Until the thread's permission flag is set, the
reply is stripped of its tool calls and the action is parked in
``pending_approval`` for the caller to approve or reject.
"""

import re
from enum import Enum
from typing import Any, Dict, Optional

from langchain_core.messages import AIMessage
from langgraph.graph import END

from orchestrator.errors import ConfigurationError, PermissionPendingError
from orchestrator.models.outcome import TurnOutcome
from orchestrator.utils.messages import content_to_text

PERMISSION_SENTINEL = "[SYSTEM_ACTION:REQUEST_PERMISSION]"
LEGACY_SHEET_SENTINEL = "[SYSTEM_ACTION:REQUEST_SHEET_PERMISSION]"

_SENTINEL_RE = re.compile(
    "|".join(re.escape(s) for s in (PERMISSION_SENTINEL, LEGACY_SHEET_SENTINEL))
)

DEFAULT_APPROVAL_PROMPT = "I need your approval before I continue with this action."
APPROVED_MESSAGE = "Approved. Go ahead with the action."
REJECTED_MESSAGE = "Rejected. Do not perform the action."
REJECTION_NOTICE = (
    "Understood. I did not perform that action. Let me know if you'd like to do "
    "something else instead."
)

# Marks the AI message that replays an approved action; its calls bypass the tool cache
APPROVED_ACTION_KEY = "approved_action"


def is_approved_replay(message: AIMessage) -> bool:
    """Return whether the message replays calls the caller just approved."""
    return bool(message.additional_kwargs.get(APPROVED_ACTION_KEY))


class ApprovalDecision(str, Enum):
    """Caller decision on a pending action."""

    APPROVED = "approved"
    REJECTED = "rejected"


def contains_sentinel(text: str) -> bool:
    """Return whether text carries an approval sentinel."""
    return bool(_SENTINEL_RE.search(text or ""))


def strip_sentinel(text: str) -> str:
    """Remove approval sentinels and tidy surrounding whitespace."""
    return _SENTINEL_RE.sub("", text or "").strip()


def enforce_approval(response: AIMessage, agent: str, permission_granted: bool) -> None:
    """Pause the turn if ``response`` requests a sensitive action without permission.

    Raises:
        PermissionPendingError: Carrying the stripped text and the deferred tool calls.
    """
    text = content_to_text(response.content)
    if permission_granted or not contains_sentinel(text):
        return
    raise PermissionPendingError(
        agent=agent,
        text=strip_sentinel(text) or DEFAULT_APPROVAL_PROMPT,
        tool_calls=[dict(call) for call in response.tool_calls or []],
    )


def paused_update(pending: PermissionPendingError, response: AIMessage) -> Dict[str, Any]:
    """State update that ends the turn and parks the deferred action."""
    stripped = AIMessage(content=pending.text, id=response.id, name=response.name)
    return {
        "messages": [stripped],
        "pending_approval": {
            "agent": pending.agent,
            "content": pending.text,
            "tool_calls": pending.tool_calls,
        },
        "final_response": pending.text,
        "outcome": TurnOutcome.APPROVAL_REQUIRED,
        "next_node": END,
    }


def parse_decision(value: Optional[str]) -> Optional[ApprovalDecision]:
    """Normalize a caller-supplied decision."""
    if value is None:
        return None
    if isinstance(value, ApprovalDecision):
        return value
    try:
        return ApprovalDecision(str(value).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Unsupported approval decision '{value}'. Expected 'approved' or 'rejected'.",
            user_message="Please answer the approval request with approve or reject.",
        )
