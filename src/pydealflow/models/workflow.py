"""Scheduled workflow requests and their results.

Represents a unit of work in the scheduler's priority queue, tracking
its options, timing and the future the submitter is waiting on.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydealflow.models.status import RunStatus


@dataclass
class ExecutionOptions:
    """Per-request execution options."""

    timeout_ms: int | None = None
    """Wall-clock budget for the whole run; None means no timeout."""

    priority: int = 0
    """Higher numbers are dequeued first; ties keep submission order."""

    continue_on_error: bool = False
    """Capture run failures into the result instead of raising them."""

    tags: list[str] = field(default_factory=list)
    """Free-form labels for categorizing workflows."""

    global_params: dict[str, Any] = field(default_factory=dict)
    """Run parameters passed to every node of the flow."""


@dataclass(frozen=True)
class MetricsSnapshot:
    """Run metrics copied into a WorkflowResult."""

    start_time: datetime
    end_time: datetime
    nodes_executed: int = 0
    retries: int = 0
    state_updates: int = 0
    transitions: int = 0


@dataclass
class WorkflowResult:
    """Outcome of one scheduled run."""

    success: bool
    final_state: Any
    """The caller's shared-state object (same instance, never copied)."""

    duration_ms: float
    steps_executed: int
    errors: list[BaseException]
    run_id: str
    metrics: MetricsSnapshot

    def __repr__(self) -> str:
        return (
            f"WorkflowResult(run_id={self.run_id!r}, success={self.success}, "
            f"steps_executed={self.steps_executed}, errors={len(self.errors)})"
        )


@dataclass
class QueuedWorkflow:
    """Workflow request waiting in (or taken from) the scheduler queue.

    The future is the completion callback: it is resolved with a
    WorkflowResult or rejected with an exception exactly once. The request
    is itself awaitable, so the handle returned by submit() can be awaited
    directly or kept to cancel by id.
    """

    id: str
    flow_name: str
    initial_state: Any
    options: ExecutionOptions
    future: asyncio.Future[WorkflowResult]
    sequence: int = 0
    """Monotonic submission counter used to break priority ties."""

    status: RunStatus = RunStatus.QUEUED
    queued_at: datetime = field(default_factory=datetime.now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def priority(self) -> int:
        return self.options.priority

    def sort_key(self) -> tuple[int, int]:
        """Heap key: highest priority first, then first submitted."""
        return (-self.options.priority, self.sequence)

    def __lt__(self, other: QueuedWorkflow) -> bool:
        return self.sort_key() < other.sort_key()

    def __await__(self) -> Generator[Any, None, WorkflowResult]:
        """Awaiting the request waits for its result."""
        return self.future.__await__()

    def done(self) -> bool:
        return self.future.done()

    def __repr__(self) -> str:
        return (
            f"QueuedWorkflow(id={self.id!r}, flow_name={self.flow_name!r}, "
            f"priority={self.priority}, status={self.status})"
        )
