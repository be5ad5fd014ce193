"""
Workflow execution: the priority scheduler for named flow runs.

- WorkflowScheduler: priority queue, concurrency ceiling, timeouts,
  cancellation and result assembly
"""

from pydealflow.executor.scheduler import (
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_POLL_INTERVAL,
    WorkflowScheduler,
)

__all__ = [
    "WorkflowScheduler",
    "DEFAULT_MAX_CONCURRENT",
    "DEFAULT_POLL_INTERVAL",
]
