"""Helpers for working with conversation message lists."""

import json
from typing import Any, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, ToolMessage


def content_to_text(content: Any) -> str:
    """Flatten message content (string or content blocks) into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return str(content)


def serialize_tool_result(result: Any) -> str:
    """Render a tool return value as message content."""
    if isinstance(result, str):
        return result
    if isinstance(result, (dict, list)):
        return json.dumps(result, default=str)
    return str(result)


def current_turn_start(messages: Sequence[BaseMessage]) -> int:
    """Index of the most recent human message, or 0 when there is none."""
    for index in range(len(messages) - 1, -1, -1):
        if isinstance(messages[index], HumanMessage):
            return index
    return 0


def current_turn(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Messages belonging to the turn that started with the latest human message."""
    return list(messages[current_turn_start(messages) :])


def latest_ai_text(messages: Sequence[BaseMessage]) -> Optional[str]:
    """Most recent non-empty AI text in the current turn."""
    for message in reversed(current_turn(messages)):
        if isinstance(message, AIMessage):
            text = content_to_text(message.content).strip()
            if text:
                return text
    return None


def unanswered_tool_calls(messages: Sequence[BaseMessage]) -> List[dict]:
    """Tool calls of the latest AI message that have no matching tool result.

    A turn that was cancelled or aborted between an agent step and the tools
    step leaves such calls behind in the last checkpoint.
    """
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if isinstance(message, AIMessage):
            answered = {
                m.tool_call_id for m in messages[index + 1 :] if isinstance(m, ToolMessage)
            }
            return [call for call in message.tool_calls if call["id"] not in answered]
    return []


def trim_history(messages: Sequence[BaseMessage], max_messages: int) -> List[BaseMessage]:
    """Keep the first message plus the most recent ``max_messages - 1``.

    Tool messages left at the head of the kept window would reference a tool
    call that was cut off, so they are dropped as well.
    """
    messages = list(messages)
    if len(messages) <= max_messages:
        return messages

    tail = messages[-(max_messages - 1) :]
    while tail and isinstance(tail[0], ToolMessage):
        tail = tail[1:]
    return [messages[0], *tail]
