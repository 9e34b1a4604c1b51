"""Tools provided by the engine itself."""

import time
from datetime import datetime, timezone

from orchestrator.errors import ToolExecutionError
from orchestrator.execution.eviction import READ_EVICTED_TOOL
from orchestrator.tools.registry import RegisteredTool, ToolContext, create_tool


async def _read_evicted_result(args: dict, context: ToolContext) -> str:
    reference = args["reference"]
    store = context.result_store
    content = store.get(context.thread_id, reference) if store is not None else None
    if content is None:
        raise ToolExecutionError(
            f"No stored result found for reference '{reference}'. "
            "It may have expired from storage; call the original tool again.",
            tool_name=READ_EVICTED_TOOL,
            code="EVICTED_RESULT_NOT_FOUND",
        )

    offset = int(args.get("offset") or 0)
    limit = args.get("limit")
    if offset or limit:
        end = offset + int(limit) if limit else None
        return content[offset:end]
    return content


async def _get_current_time(args: dict, context: ToolContext) -> str:
    now = datetime.now().astimezone()
    return (
        "CURRENT SYSTEM DATE AND TIME:\n"
        f"- Date: {now.date().isoformat()}\n"
        f"- Time: {now.strftime('%H:%M:%S')}\n"
        f"- ISO Format: {now.astimezone(timezone.utc).isoformat()}\n"
        f"- Unix Timestamp: {int(now.timestamp() * 1000)}\n"
        f"- Local Timezone: {now.tzname()}"
    )


async def _get_system_timezone(args: dict, context: ToolContext) -> str:
    now = datetime.now().astimezone()
    offset = now.utcoffset()
    offset_minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if offset_minutes >= 0 else "-"
    hours, minutes = divmod(abs(offset_minutes), 60)
    return (
        "SYSTEM TIMEZONE INFORMATION:\n"
        f"- Timezone: {now.tzname() or time.tzname[0]}\n"
        f"- UTC Offset: {sign}{hours:02d}:{minutes:02d}\n"
        f"- Offset Minutes: {offset_minutes}\n"
        f"- Current Local Time: {now.strftime('%Y-%m-%d %H:%M:%S')}"
    )


def read_evicted_result_tool() -> RegisteredTool:
    """Tool that returns the full payload behind an eviction reference."""
    return create_tool(
        name=READ_EVICTED_TOOL,
        description=(
            "Read the full contents of a tool result that was truncated because it was too "
            "large. Pass the reference shown in the truncation notice."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "reference": {
                    "type": "string",
                    "description": "Reference from the truncation notice (the original call id).",
                },
                "offset": {"type": "integer", "minimum": 0},
                "limit": {"type": "integer", "minimum": 1},
            },
            "required": ["reference"],
            "additionalProperties": False,
        },
        invoke_fn=_read_evicted_result,
        cacheable=False,
        evict_results=False,
    )


def get_current_time_tool() -> RegisteredTool:
    """Current date and time."""
    return create_tool(
        name="get_current_time",
        description=(
            "ALWAYS call this tool when users ask for the current date, time, or "
            '"what time is it". Returns the actual current system date and time.'
        ),
        invoke_fn=_get_current_time,
        cacheable=False,
    )


def get_system_timezone_tool() -> RegisteredTool:
    """Timezone and UTC offset."""
    return create_tool(
        name="get_system_timezone",
        description=(
            "Call this tool when users ask about timezone, UTC offset, or system time "
            "settings."
        ),
        invoke_fn=_get_system_timezone,
        cacheable=False,
    )


def builtin_tools() -> list[RegisteredTool]:
    """All engine-provided tools."""
    return [read_evicted_result_tool(), get_current_time_tool(), get_system_timezone_tool()]


SUPERVISOR_UTILITY_TOOLS = ("get_current_time", "get_system_timezone")
