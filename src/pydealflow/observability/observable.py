"""
Observable flows: graph traversal instrumented with run events.

An ObservableFlow routes exactly like a Flow. Around every step it emits
NODE_START, NODE_COMPLETE (elapsed time and action) or NODE_ERROR,
STATE_UPDATE events for top-level shared-state fields the step changed,
and TRANSITION events, including "MISSING: <action>" when a non-default
action has no successor. Retries are reported by the node itself through
the task-local RUN_OBSERVER, which the flow sets to a RunTracker for the
duration of the run.

Each run gets a uuid7 run id (or the one the caller passes in) and its
own RunContext in the FlowLogger.

Example:
    ```python
    flow = ObservableFlow(collect, name="deal-intake", flow_logger=flow_logger)
    await flow.run(state)

    metrics = flow.get_metrics()
    print(metrics.nodes_executed, metrics.retries)
    ```
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from uuid_extensions import uuid7

from pydealflow.core.context import RUN_OBSERVER, get_current_observer
from pydealflow.core.flow import Flow
from pydealflow.core.node import DEFAULT_ACTION, BaseNode
from pydealflow.models import LogEntry, RunContext, RunMetrics
from pydealflow.observability.diff import StateSnapshot
from pydealflow.observability.logger import FlowLogger

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Time-ordered unique run id."""
    return str(uuid7())


class RunTracker:
    """Observer for one run, forwarding node retries to the FlowLogger."""

    def __init__(self, run_id: str, flow_logger: FlowLogger):
        self.run_id = run_id
        self.flow_logger = flow_logger

    def on_node_retry(
        self, node_name: str, attempt: int, max_attempts: int, error: BaseException
    ) -> None:
        self.flow_logger.log_node_retry(self.run_id, node_name, attempt, max_attempts, error)


class ObservableFlow(Flow):
    """Flow that records every run in a FlowLogger.

    `run_id` holds the id of the most recently started run, which is what
    get_context(), get_metrics() and get_logs() report on.
    """

    def __init__(
        self,
        start: BaseNode | None = None,
        name: str | None = None,
        flow_logger: FlowLogger | None = None,
    ):
        super().__init__(start, name)
        self.flow_logger = flow_logger or FlowLogger()
        self.run_id: str | None = None

    async def run(self, shared: Any, run_id: str | None = None) -> str | None:
        """Run the flow as one observed run.

        Args:
            shared: Shared state, mutated in place by every step
            run_id: Id to record the run under (generated if omitted)
        """
        if self.successors:
            logger.warning(f"Flow '{self.name}' won't run its successors. Use a parent Flow.")
        return await self._observe(shared, run_id or new_run_id())

    async def _run(self, shared: Any) -> str | None:
        return await self._observe(shared, new_run_id())

    async def _observe(self, shared: Any, run_id: str) -> str | None:
        self.run_id = run_id
        self.flow_logger.start_run(run_id, self.name)
        started = time.perf_counter()

        token = RUN_OBSERVER.set(RunTracker(run_id, self.flow_logger))
        try:
            result, failures = await self._drive(shared)
        except BaseException as e:
            self.flow_logger.complete_run(run_id, success=False, error=e)
            logger.error(
                f"Flow '{self.name}' failed after {self._elapsed_ms(started):.0f}ms "
                f"({run_id}): {e!r}"
            )
            raise
        finally:
            RUN_OBSERVER.reset(token)

        self.flow_logger.complete_run(
            run_id, success=not failures, error=failures[0] if failures else None
        )
        logger.info(f"Flow '{self.name}' finished in {self._elapsed_ms(started):.0f}ms ({run_id})")
        return result

    async def _drive(self, shared: Any) -> tuple[Any, list[Exception]]:
        """Execute the run body; returns (result, per-item failures)."""
        prep_res = self.prepare(shared)
        last_action = await self._orchestrate(shared)
        return self.finalize(shared, prep_res, last_action), []

    async def _step(self, node: BaseNode, shared: Any) -> str | None:
        run_id = self._current_run_id()
        self.flow_logger.log_node_start(run_id, node.name, node.params)

        snapshot = StateSnapshot(shared)
        started = time.perf_counter()
        try:
            action = await node._run(shared)
        except Exception as e:
            self._record_state_changes(run_id, node.name, snapshot, shared)
            self.flow_logger.log_node_error(run_id, node.name, e)
            raise

        self._record_state_changes(run_id, node.name, snapshot, shared)
        self.flow_logger.log_node_complete(run_id, node.name, action, self._elapsed_ms(started))
        return action

    def _advance(self, node: BaseNode, action: str | None) -> BaseNode | None:
        nxt = node.get_next_node(action)
        if nxt is None and action and action != DEFAULT_ACTION:
            self.flow_logger.log_transition(self._current_run_id(), node.name, f"MISSING: {action}")
        return nxt

    def _record_state_changes(
        self, run_id: str, node_name: str, snapshot: StateSnapshot, shared: Any
    ) -> None:
        for field, (old_value, new_value) in snapshot.changes(shared).items():
            self.flow_logger.log_state_update(run_id, node_name, str(field), old_value, new_value)

    def _current_run_id(self) -> str:
        observer = get_current_observer()
        if isinstance(observer, RunTracker):
            return observer.run_id
        return self.run_id or ""

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def get_context(self) -> RunContext | None:
        return self.flow_logger.get_context(self.run_id) if self.run_id else None

    def get_metrics(self) -> RunMetrics | None:
        context = self.get_context()
        return context.metrics if context else None

    def get_logs(self) -> list[LogEntry]:
        context = self.get_context()
        return list(context.logs) if context else []


class ObservableBatchFlow(ObservableFlow):
    """Observed flow traversed once per prepared parameter dict, in order.

    A failing traversal is recorded and the remaining items still run.
    The run is marked failed if any item failed, and finalize receives the
    list of per-item errors as its execute result.
    """

    def prepare(self, shared: Any) -> list[dict[str, Any]]:
        return []

    def finalize(self, shared: Any, prep_res: Any, exec_res: Any) -> str | None:
        return None

    async def _drive(self, shared: Any) -> tuple[Any, list[Exception]]:
        batch_params = self.prepare(shared) or []
        logger.info(f"Batch flow '{self.name}' starting with {len(batch_params)} items")

        failures: list[Exception] = []
        for index, bp in enumerate(batch_params, 1):
            try:
                await self._orchestrate(shared, {**self.params, **bp})
            except Exception as e:
                logger.error(f"Batch item {index}/{len(batch_params)} of '{self.name}' failed: {e}")
                failures.append(e)

        return self.finalize(shared, batch_params, failures), failures


class ObservableParallelBatchFlow(ObservableBatchFlow):
    """ObservableBatchFlow whose traversals all start at once."""

    async def _drive(self, shared: Any) -> tuple[Any, list[Exception]]:
        batch_params = self.prepare(shared) or []
        logger.info(f"Parallel batch flow '{self.name}' starting with {len(batch_params)} items")

        results = await asyncio.gather(
            *(self._orchestrate(shared, {**self.params, **bp}) for bp in batch_params),
            return_exceptions=True,
        )

        failures: list[Exception] = []
        for index, outcome in enumerate(results, 1):
            if isinstance(outcome, Exception):
                logger.error(f"Batch item {index}/{len(batch_params)} of '{self.name}' failed: {outcome}")
                failures.append(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

        logger.info(
            f"Parallel batch flow '{self.name}' completed: "
            f"{len(results) - len(failures)} succeeded, {len(failures)} failed"
        )
        return self.finalize(shared, batch_params, failures), failures
