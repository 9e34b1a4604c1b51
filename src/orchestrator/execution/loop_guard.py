"""Anti-loop guard for tool dispatch."""

import logging
from typing import List, Sequence, Set, Tuple

from langchain_core.messages import AIMessage, BaseMessage

from orchestrator.errors import LoopDetectedError
from orchestrator.execution.cache import canonical_args
from orchestrator.utils.messages import current_turn, latest_ai_text

logger = logging.getLogger(__name__)

ROUTE_TOOL = "route"


def _signatures(message: AIMessage) -> Set[Tuple[str, str]]:
    return {
        (call["name"], canonical_args(call.get("args")))
        for call in message.tool_calls or []
        if call["name"] != ROUTE_TOOL
    }


def check_for_loop(messages: Sequence[BaseMessage], window: int = 2) -> None:
    """Compare the latest tool batch with the batch issued ``window`` AI turns earlier.

    Only the current turn is considered. The last message must be the AI
    message whose calls are about to be dispatched.

    Raises:
        LoopDetectedError: If any call in the latest batch repeats an earlier one.
    """
    ai_messages: List[AIMessage] = [m for m in current_turn(messages) if isinstance(m, AIMessage)]
    if len(ai_messages) <= window:
        return

    latest = ai_messages[-1]
    earlier = ai_messages[-1 - window]
    repeated = _signatures(latest) & _signatures(earlier)
    if not repeated:
        return

    name, _ = sorted(repeated)[0]
    args = next(call.get("args") or {} for call in latest.tool_calls if call["name"] == name)
    prior_text = latest_ai_text(messages) or ""
    logger.warning(
        "Repeated tool call detected; suppressing batch",
        extra={"tool_name": name, "window": window},
    )
    raise LoopDetectedError(name, args, prior_text=prior_text)
