import argparse
import asyncio
import logging
import sys

from orchestrator.config import EngineSettings, get_env_str
from orchestrator.engine import Orchestrator, TurnRequest
from orchestrator.errors import ConfigurationError
from orchestrator.events import EventType, StreamEvent
from orchestrator.telemetry import telemetry
from orchestrator.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

APPROVE_COMMAND = "/approve"
REJECT_COMMAND = "/reject"
QUIT_COMMANDS = {"/quit", "/exit"}


def format_event(event: StreamEvent) -> str:
    """One-line rendering of a stream event for the terminal."""
    data = event.data
    if event.type == EventType.TEXT_DELTA:
        return f"[{event.node}] {data.get('content', '')}"
    if event.type == EventType.ROUTING_DECISION:
        return f"-> routing to {data.get('target')} ({data.get('reasoning', '')})"
    if event.type == EventType.TOOL_STARTED:
        return f"   tool {data.get('tool')} started"
    if event.type == EventType.TOOL_COMPLETED:
        flags = [flag for flag in ("cached", "evicted") if data.get(flag)]
        suffix = f" [{', '.join(flags)}]" if flags else ""
        return f"   tool {data.get('tool')} {data.get('status')}{suffix}"
    if event.type == EventType.APPROVAL_REQUIRED:
        return (
            f"APPROVAL REQUIRED: {data.get('message')}\n"
            f"Type {APPROVE_COMMAND} or {REJECT_COMMAND}."
        )
    if event.type == EventType.ERROR:
        return f"ERROR: {data.get('message')}"
    return f"\n{data.get('response') or ''}"


def parse_input(line: str) -> TurnRequest:
    """Turn a REPL line into request fields (thread/user filled in by the caller)."""
    stripped = line.strip()
    if stripped == APPROVE_COMMAND:
        return TurnRequest(thread_id="", approval_decision="approved")
    if stripped == REJECT_COMMAND:
        return TurnRequest(thread_id="", approval_decision="rejected")
    return TurnRequest(thread_id="", message=stripped)


async def chat(thread_id: str, user_id: str) -> None:
    """Interactive loop against an in-process engine with the built-in tools only."""
    engine = Orchestrator.from_env(ToolRegistry())
    print(f"Thread {thread_id}. Type /quit to leave.")
    while True:
        line = await asyncio.to_thread(input, "> ")
        if line.strip() in QUIT_COMMANDS:
            return
        if not line.strip():
            continue
        request = parse_input(line).model_copy(update={"thread_id": thread_id, "user_id": user_id})
        async for event in engine.astream_turn(request):
            print(format_event(event))


def main():
    """Run the orchestrator CLI."""
    logging.basicConfig(
        level=get_env_str("LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Multi-agent orchestrator CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_parser = subparsers.add_parser("chat", help="Chat with the engine in the terminal")
    chat_parser.add_argument("--thread", default="local", help="Thread id (default: local)")
    chat_parser.add_argument("--user", default="local-user", help="User id (default: local-user)")

    subparsers.add_parser("settings", help="Print the effective engine settings")

    args = parser.parse_args()
    telemetry.configure()

    try:
        if args.command == "chat":
            asyncio.run(chat(args.thread, args.user))
        elif args.command == "settings":
            print(EngineSettings.from_env())
        else:
            parser.print_help()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except (KeyboardInterrupt, EOFError):
        sys.exit(0)


if __name__ == "__main__":
    main()
