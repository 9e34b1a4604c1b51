"""Size-based eviction of oversized tool results."""

import logging

from langchain_core.messages import ToolMessage

from orchestrator.execution.result_store import ResultStore
from orchestrator.utils.messages import content_to_text

logger = logging.getLogger(__name__)

READ_EVICTED_TOOL = "read_evicted_result"


def eviction_notice(original_size: int, reference: str) -> str:
    """Notice appended to the preview of an evicted result."""
    return (
        f"[NOTICE: This result was {original_size} characters long and has been moved to "
        f"out-of-band storage. Call '{READ_EVICTED_TOOL}' with reference '{reference}' "
        "if you need the full data.]"
    )


def evict_if_oversized(
    message: ToolMessage,
    *,
    thread_id: str,
    store: ResultStore,
    threshold: int,
    preview_chars: int,
) -> ToolMessage:
    """Replace an oversized tool result with a preview plus a retrievable reference.

    The full payload is written to ``store`` under the message's tool call id.
    Messages at or below the threshold are returned unchanged.
    """
    content = content_to_text(message.content)
    original_size = len(content)
    if original_size <= threshold:
        return message

    reference = message.tool_call_id
    store.put(thread_id, reference, content)

    preview = content[:preview_chars] + "... [Result truncated]"
    logger.info(
        "Evicted oversized tool result",
        extra={
            "thread_id": thread_id,
            "tool_name": message.name,
            "original_size": original_size,
            "reference": reference,
        },
    )
    return ToolMessage(
        content=f"{preview}\n\n{eviction_notice(original_size, reference)}",
        tool_call_id=message.tool_call_id,
        name=message.name,
        status=message.status,
        additional_kwargs={
            **message.additional_kwargs,
            "is_evicted": True,
            "full_content_ref": reference,
            "original_size": original_size,
        },
    )
