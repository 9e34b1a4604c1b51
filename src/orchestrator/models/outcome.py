from enum import Enum


class TurnOutcome(str, Enum):
    """How a turn ended."""

    COMPLETED = "completed"
    APPROVAL_REQUIRED = "approval_required"
    REJECTED = "rejected"
    LOOP_DETECTED = "loop_detected"
    ITERATION_LIMIT = "iteration_limit"
    CANCELLED = "cancelled"
    ERROR = "error"
