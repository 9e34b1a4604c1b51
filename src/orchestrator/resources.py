"""Recovery of resource handles from earlier conversation content.

Specialists get the active spreadsheet and ad account ids injected into their
prompt so follow-up requests ("add this to the sheet") keep working without
the user repeating identifiers.
"""

import json
import re
from typing import Dict, Sequence

from langchain_core.messages import BaseMessage

from orchestrator.utils.messages import content_to_text

SPREADSHEET_TOOLS = frozenset({"create_google_sheet", "export_metrics_to_sheets"})

_DASHED_ACCOUNT_RE = re.compile(r"\b\d{3}-\d{3}-\d{4}\b")
_ACCOUNT_FIELD_RE = re.compile(r'"accountId"\s*:\s*"?(\d{10})"?')

RECENT_MESSAGE_WINDOW = 5


def handles_from_tool_result(tool_name: str, content: str) -> Dict[str, str]:
    """Extract handles from a raw tool result."""
    handles: Dict[str, str] = {}
    if tool_name in SPREADSHEET_TOOLS:
        try:
            payload = json.loads(content)
        except (TypeError, ValueError):
            payload = None
        if isinstance(payload, dict) and payload.get("spreadsheetId"):
            handles["spreadsheet_id"] = str(payload["spreadsheetId"])

    account_id = _find_account_id(content)
    if account_id:
        handles["account_id"] = account_id
    return handles


def handles_from_recent_messages(
    messages: Sequence[BaseMessage], window: int = RECENT_MESSAGE_WINDOW
) -> Dict[str, str]:
    """Scan the most recent messages for an ad account id."""
    for message in reversed(list(messages)[-window:]):
        account_id = _find_account_id(content_to_text(message.content))
        if account_id:
            return {"account_id": account_id}
    return {}


def _find_account_id(text: str) -> str:
    if not text:
        return ""
    match = _DASHED_ACCOUNT_RE.search(text)
    if match:
        return match.group(0)
    match = _ACCOUNT_FIELD_RE.search(text)
    if match:
        return match.group(1)
    return ""


def describe_handles(handles: Dict[str, str]) -> str:
    """Prompt fragment listing recovered handles."""
    lines = []
    if handles.get("spreadsheet_id"):
        lines.append(f"- Active Spreadsheet ID: {handles['spreadsheet_id']}")
    if handles.get("account_id"):
        lines.append(f"- Account ID mentioned in this conversation: {handles['account_id']}")
    return "\n".join(lines)
