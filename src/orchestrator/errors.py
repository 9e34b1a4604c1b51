"""Error taxonomy for the orchestration engine.

Every engine error carries a ``category`` and a plain-language ``user_message``
so callers never have to surface a raw exception to the end user. Tool-local
failures are additionally described by the ``ToolError`` envelope that is
serialized into error-shaped tool messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorCategory(str, Enum):
    """Canonical error categories."""

    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    TOOL_FAILURE = "tool_failure"
    UNKNOWN_TOOL = "unknown_tool"
    INVALID_REQUEST = "invalid_request"
    LOOP_DETECTED = "loop_detected"
    CONFIGURATION = "configuration"
    PERMISSION_PENDING = "permission_pending"
    ROUTING_CONTRACT = "routing_contract"
    ITERATION_LIMIT = "iteration_limit"
    CONCURRENT_TURN = "concurrent_turn"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


TOOL_ERROR_MESSAGE_MAX_CHARS = 2048

_TRUNCATION_MARKER = "... [truncated]"


def truncate_error_message(message: str, limit: int = TOOL_ERROR_MESSAGE_MAX_CHARS) -> str:
    """Clip a message so it always fits into a ``ToolError`` envelope."""
    if len(message) <= limit:
        return message
    return message[: limit - len(_TRUNCATION_MARKER)] + _TRUNCATION_MARKER


class ToolError(BaseModel):
    """Envelope describing a failed tool invocation."""

    model_config = ConfigDict(extra="allow")

    category: ErrorCategory = Field(..., description="Provider-agnostic error category")
    code: Optional[str] = Field(None, description="Stable machine-readable error code")
    message: str = Field(
        ..., max_length=TOOL_ERROR_MESSAGE_MAX_CHARS, description="Safe message for the agent"
    )
    retryable: bool = Field(False, description="Whether an explicit retry may succeed")
    details: Optional[dict[str, Any]] = Field(None, description="Safe structured details")

    def to_content(self) -> str:
        """Serialize for use as tool message content."""
        return self.model_dump_json(exclude_none=True)


class OrchestratorError(Exception):
    """Base class for engine errors."""

    category = ErrorCategory.INTERNAL
    user_message = "Something went wrong while handling your request. Please try again."

    def __init__(self, message: str = "", *, user_message: Optional[str] = None):
        """Initialize with a log message and an optional user-facing override."""
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class TransientExternalError(OrchestratorError):
    """Model or tool call failed in a way that may succeed later (timeouts, rate limits)."""

    category = ErrorCategory.TRANSIENT
    user_message = (
        "The assistant is temporarily unavailable. Your conversation was saved; "
        "please try again in a moment."
    )


class ToolExecutionError(OrchestratorError):
    """A single tool invocation failed.

    Handed back to the agent as an error-shaped tool message, never aborts the turn.
    """

    category = ErrorCategory.TOOL_FAILURE
    user_message = "A tool used to answer your request failed."

    def __init__(
        self,
        message: str,
        *,
        tool_name: Optional[str] = None,
        code: str = "TOOL_EXECUTION_FAILED",
        retryable: bool = False,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize with the failing tool name and envelope fields."""
        super().__init__(message)
        self.tool_name = tool_name
        self.code = code
        self.retryable = retryable
        self.details = details

    def to_tool_error(self) -> ToolError:
        """Build the envelope written into the tool message."""
        details = dict(self.details or {})
        if self.tool_name:
            details.setdefault("tool_name", self.tool_name)
        return ToolError(
            category=self.category,
            code=self.code,
            message=truncate_error_message(str(self)),
            retryable=self.retryable,
            details=details or None,
        )


class UnknownToolError(ToolExecutionError):
    """The model requested a tool name that is not in the registry."""

    category = ErrorCategory.UNKNOWN_TOOL

    def __init__(self, tool_name: str, available: Optional[list[str]] = None):
        """Initialize with the unknown name and the names that do exist."""
        super().__init__(
            f"Unknown tool '{tool_name}'. It is not registered with this engine.",
            tool_name=tool_name,
            code="UNKNOWN_TOOL",
            details={"available_tools": sorted(available or [])},
        )


class LoopDetectedError(OrchestratorError):
    """An agent repeated the tool call it issued two AI turns earlier."""

    category = ErrorCategory.LOOP_DETECTED
    user_message = (
        "I seem to be stuck repeating the same step, so I stopped here. "
        "Could you rephrase the request or give me more detail?"
    )

    def __init__(self, tool_name: str, args: dict, prior_text: str = ""):
        """Initialize with the repeated call and the text produced before it."""
        super().__init__(f"Repeated tool call detected: {tool_name}")
        self.tool_name = tool_name
        self.tool_args = args
        self.prior_text = prior_text


class ConfigurationError(OrchestratorError):
    """Missing identity, invalid credentials or unusable settings."""

    category = ErrorCategory.CONFIGURATION
    user_message = (
        "The assistant is not configured correctly for this request. "
        "Please check your account setup."
    )


class PermissionPendingError(OrchestratorError):
    """Control-flow pause: an agent asked for approval of a sensitive action."""

    category = ErrorCategory.PERMISSION_PENDING
    user_message = "Approval is required before I can continue."

    def __init__(self, agent: str, text: str, tool_calls: Optional[list[dict]] = None):
        """Initialize with the requesting agent and the deferred action."""
        super().__init__(f"Approval required for action requested by {agent}")
        self.agent = agent
        self.text = text
        self.tool_calls = list(tool_calls or [])


class RoutingContractError(OrchestratorError):
    """A routing function returned a target outside its declared set."""

    category = ErrorCategory.ROUTING_CONTRACT

    def __init__(self, source: str, target: str, allowed: list[str]):
        """Initialize with the offending edge."""
        super().__init__(
            f"Route from '{source}' returned '{target}', expected one of {sorted(allowed)}"
        )
        self.source = source
        self.target = target
        self.allowed = allowed


class IterationLimitError(OrchestratorError):
    """A turn exceeded the maximum number of graph steps."""

    category = ErrorCategory.ITERATION_LIMIT
    user_message = (
        "This request needed more steps than allowed, so I stopped. "
        "Try narrowing it down or splitting it into smaller questions."
    )


class ConcurrentTurnError(OrchestratorError):
    """A turn was started for a thread that already has one in flight."""

    category = ErrorCategory.CONCURRENT_TURN
    user_message = "A previous message in this conversation is still being handled."
