"""Status enumerations for workflow execution tracking.

Defines lifecycle states for scheduled workflow requests and the
level/type vocabulary of structured run events.
"""

from enum import Enum


class RunStatus(Enum):
    """Status of a workflow request submitted to the scheduler.

    Lifecycle:
        QUEUED → RUNNING → SUCCEEDED/FAILED/CANCELLED

    A queued request may also move straight to CANCELLED when it is
    removed from the queue before it starts.
    """

    QUEUED = "QUEUED"
    """Request is waiting in the priority queue."""

    RUNNING = "RUNNING"
    """Request is in flight (counts against the concurrency ceiling)."""

    SUCCEEDED = "SUCCEEDED"
    """Run reached a node with no successor for its action."""

    FAILED = "FAILED"
    """Run raised, timed out, or failed its precondition checks."""

    CANCELLED = "CANCELLED"
    """Request was removed from the queue before it started."""

    def __str__(self) -> str:
        return self.value


class LogLevel(Enum):
    """Severity of a run event."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    def __str__(self) -> str:
        return self.value


class EventType(Enum):
    """Kind of structured event emitted while a run executes."""

    FLOW_START = "FLOW_START"
    FLOW_COMPLETE = "FLOW_COMPLETE"
    FLOW_ERROR = "FLOW_ERROR"
    NODE_START = "NODE_START"
    NODE_COMPLETE = "NODE_COMPLETE"
    NODE_ERROR = "NODE_ERROR"
    NODE_RETRY = "NODE_RETRY"
    STATE_UPDATE = "STATE_UPDATE"
    TRANSITION = "TRANSITION"

    def __str__(self) -> str:
        return self.value
