"""Task-local run observer for flow execution.

Provides a ContextVar holding the observer of the run currently executing
in this asyncio task, so nodes can report retries without threading an
observer through every call. Each asyncio task (and every task spawned
from it by asyncio.gather) sees the observer that was current when it
was created, allowing many runs to execute concurrently without
interference.
"""

from contextvars import ContextVar
from typing import Protocol


class RunObserver(Protocol):
    """Receives node-level notifications for the active run."""

    def on_node_retry(
        self, node_name: str, attempt: int, max_attempts: int, error: BaseException
    ) -> None:
        """Called before attempt number `attempt` (2..max_attempts) of a node's execute."""
        ...


# =============================================================================
# Task-Local Context Variables
# =============================================================================

RUN_OBSERVER: ContextVar[RunObserver | None] = ContextVar("run_observer", default=None)
"""Task-local observer of the current run.

Usage:
    ```python
    token = RUN_OBSERVER.set(observer)
    try:
        await flow._run(shared)
    finally:
        RUN_OBSERVER.reset(token)
    ```
"""


def get_current_observer() -> RunObserver | None:
    """Return the observer of the run executing in this task, if any."""
    return RUN_OBSERVER.get()
