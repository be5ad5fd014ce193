"""
WorkflowScheduler - priority-ordered, concurrency-bounded workflow runs.

Callers submit a named flow configuration with an initial shared state
and ExecutionOptions. Requests wait in a priority heap (highest priority
first, submission order among equals) and a single dequeue loop starts
them while fewer than `max_concurrent` are in flight.

Each run:
1. Checks that every agent the configuration references is registered
   and passes its health check (fails fast with AgentUnavailableError).
2. Builds a fresh observable graph from the configuration.
3. Runs it under the request's timeout. A timed-out run is cancelled at
   its current suspension point: that step's finalize never runs and no
   further step starts.
4. Assembles a WorkflowResult from the run's context and metrics.

With `continue_on_error` the run's failure (including a timeout) is
captured in `WorkflowResult.errors`; otherwise it is raised to whoever
awaits the request. Precondition failures are always raised.

Usage:
    ```python
    scheduler = WorkflowScheduler(registry, configs).with_max_concurrent(5)

    request = scheduler.submit(
        "standard-deal-creation",
        {"message": "20k gallons diesel to Tulsa"},
        ExecutionOptions(priority=5, timeout_ms=30_000),
    )
    result = await request

    # or, in one step
    result = await scheduler.execute("standard-deal-creation", state)
    ```
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
import os
from collections import OrderedDict, deque
from datetime import datetime
from typing import Any

from pydealflow.errors import (
    AgentUnavailableError,
    FlowNotFoundError,
    SchedulerError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)
from pydealflow.models import (
    ExecutionOptions,
    FlowConfig,
    MetricsSnapshot,
    QueuedWorkflow,
    RunStatus,
    WorkflowResult,
)
from pydealflow.observability import FlowLogger, ObservableFlow, new_run_id
from pydealflow.registry import AgentRegistry, FlowConfigManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_POLL_INTERVAL = 0.01
HISTORY_SIZE = 1000


class WorkflowScheduler:
    """
    In-process scheduler for named workflow runs.

    All dependencies are passed explicitly; configure with the builder
    methods before submitting work:

        ```python
        scheduler = (
            WorkflowScheduler(registry, configs)
            .with_max_concurrent(2)
            .with_default_timeout(60_000)
        )
        ```

    Request lifecycle: QUEUED → RUNNING → SUCCEEDED/FAILED, or QUEUED →
    CANCELLED when removed before it starts.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        configs: FlowConfigManager,
        flow_logger: FlowLogger | None = None,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        self._registry = registry
        self._configs = configs
        self._flow_logger = flow_logger or configs.flow_logger
        self._max_concurrent = max_concurrent
        self._poll_interval = DEFAULT_POLL_INTERVAL
        self._default_timeout_ms: int | None = None

        self._queue: list[QueuedWorkflow] = []
        self._sequence = itertools.count()
        self._in_flight: dict[asyncio.Task, QueuedWorkflow] = {}
        self._finished: OrderedDict[str, QueuedWorkflow] = OrderedDict()
        self._start_order: deque[str] = deque(maxlen=HISTORY_SIZE)
        self._loop_task: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Builder configuration
    # -------------------------------------------------------------------------

    def with_max_concurrent(self, max_concurrent: int) -> WorkflowScheduler:
        """Set the concurrency ceiling (builder pattern)."""
        self.set_max_concurrent(max_concurrent)
        return self

    def with_poll_interval(self, interval: float) -> WorkflowScheduler:
        """Longest the dequeue loop waits before rechecking the queue (builder pattern)."""
        if interval < 0:
            raise ValueError(f"poll interval must be >= 0, got {interval}")
        self._poll_interval = interval
        return self

    def with_default_timeout(self, timeout_ms: int | None) -> WorkflowScheduler:
        """Timeout applied to requests that don't set their own (builder pattern)."""
        self._default_timeout_ms = timeout_ms
        return self

    def from_env(self) -> WorkflowScheduler:
        """Apply settings from the environment (builder pattern).

        Reads PYDEALFLOW_MAX_CONCURRENT, PYDEALFLOW_POLL_INTERVAL and
        PYDEALFLOW_DEFAULT_TIMEOUT_MS; unset variables leave the current
        setting unchanged.

        Example:
            # $ export PYDEALFLOW_MAX_CONCURRENT=8
            scheduler = WorkflowScheduler(registry, configs).from_env()
        """
        max_concurrent = os.getenv("PYDEALFLOW_MAX_CONCURRENT")
        poll_interval = os.getenv("PYDEALFLOW_POLL_INTERVAL")
        default_timeout = os.getenv("PYDEALFLOW_DEFAULT_TIMEOUT_MS")

        if max_concurrent:
            self.with_max_concurrent(int(max_concurrent))
        if poll_interval:
            self.with_poll_interval(float(poll_interval))
        if default_timeout:
            self.with_default_timeout(int(default_timeout))
        return self

    def set_max_concurrent(self, max_concurrent: int) -> None:
        """Change the ceiling; takes effect on the next dequeue iteration."""
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        logger.info(f"Max concurrent workflows set to {max_concurrent}")

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def flow_logger(self) -> FlowLogger:
        return self._flow_logger

    @property
    def start_order(self) -> list[str]:
        """Ids of the most recent started requests, oldest first."""
        return list(self._start_order)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def submit(
        self,
        flow_name: str,
        initial_state: Any,
        options: ExecutionOptions | None = None,
    ) -> QueuedWorkflow:
        """Queue a run and return its request; await the request for the result.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        options = options or ExecutionOptions()

        request = QueuedWorkflow(
            id=new_run_id(),
            flow_name=flow_name,
            initial_state=initial_state,
            options=options,
            future=loop.create_future(),
            sequence=next(self._sequence),
        )
        heapq.heappush(self._queue, request)

        logger.info(
            f"Workflow queued: {flow_name} ({request.id}) priority={options.priority} "
            f"queue={len(self._queue)}"
        )
        self._ensure_processing()
        return request

    async def execute(
        self,
        flow_name: str,
        initial_state: Any,
        options: ExecutionOptions | None = None,
    ) -> WorkflowResult:
        """Submit and wait for the result."""
        return await self.submit(flow_name, initial_state, options)

    # -------------------------------------------------------------------------
    # Dequeue loop
    # -------------------------------------------------------------------------

    def _ensure_processing(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        """Start runs up to the ceiling, wait for one to settle or the poll interval, reap, repeat."""
        logger.debug("Queue processing started")

        while self._queue or self._in_flight:
            while self._queue and len(self._in_flight) < self._max_concurrent:
                self._start(heapq.heappop(self._queue))

            if not self._in_flight:
                break

            # Bounded wait so new submissions and a raised ceiling are seen
            done, _ = await asyncio.wait(
                set(self._in_flight),
                timeout=self._poll_interval,
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in done:
                self._finish(self._in_flight.pop(task))

        logger.debug("Queue processing idle")

    def _start(self, request: QueuedWorkflow) -> None:
        request.status = RunStatus.RUNNING
        request.started_at = datetime.now()
        self._start_order.append(request.id)

        task = asyncio.create_task(self._run_request(request), name=f"workflow-{request.id}")
        self._in_flight[task] = request
        logger.debug(
            f"Workflow started: {request.flow_name} ({request.id}) "
            f"active={len(self._in_flight)}/{self._max_concurrent}"
        )

    def _finish(self, request: QueuedWorkflow) -> None:
        request.completed_at = datetime.now()
        self._finished[request.id] = request
        while len(self._finished) > HISTORY_SIZE:
            self._finished.popitem(last=False)

    async def _run_request(self, request: QueuedWorkflow) -> None:
        future = request.future
        try:
            result = await self.execute_direct(
                request.flow_name,
                request.initial_state,
                request.options,
                run_id=request.id,
            )
        except asyncio.CancelledError:
            request.status = RunStatus.CANCELLED
            if not future.done():
                future.set_exception(WorkflowCancelledError(request.id, "aborted"))
            raise
        except Exception as e:
            request.status = RunStatus.FAILED
            if not future.done():
                future.set_exception(e)
        else:
            request.status = RunStatus.SUCCEEDED if result.success else RunStatus.FAILED
            if not future.done():
                future.set_result(result)

    # -------------------------------------------------------------------------
    # Direct execution
    # -------------------------------------------------------------------------

    async def execute_direct(
        self,
        flow_name: str,
        initial_state: Any,
        options: ExecutionOptions | None = None,
        run_id: str | None = None,
    ) -> WorkflowResult:
        """Run one request now, bypassing the queue and the ceiling.

        Raises:
            FlowNotFoundError: If no configuration has this name
            AgentUnavailableError: If a referenced agent is missing or unhealthy
            WorkflowTimeoutError: On timeout, unless continue_on_error
            Exception: The run's own failure, unless continue_on_error
        """
        options = options or ExecutionOptions()
        run_id = run_id or new_run_id()

        config = self._configs.get_config(flow_name)
        if config is None:
            raise FlowNotFoundError(flow_name)

        await self._check_agents(config, run_id)

        flow = self._configs.create_flow(flow_name)
        if options.global_params:
            flow.set_params({**flow.params, **options.global_params})

        timeout_ms = options.timeout_ms if options.timeout_ms is not None else self._default_timeout_ms
        started = datetime.now()
        errors: list[BaseException] = []

        logger.info(f"Executing workflow {flow_name} ({run_id})")
        try:
            await self._run_with_timeout(flow, initial_state, run_id, timeout_ms)
        except Exception as e:
            logger.error(f"Workflow {flow_name} failed ({run_id}): {e}")
            if not options.continue_on_error:
                raise
            errors.append(e)

        return self._build_result(flow, run_id, initial_state, started, errors)

    async def _run_with_timeout(
        self,
        flow: ObservableFlow,
        state: Any,
        run_id: str,
        timeout_ms: int | None,
    ) -> None:
        if timeout_ms is None:
            await flow.run(state, run_id=run_id)
            return

        scope = asyncio.timeout(timeout_ms / 1000)
        try:
            async with scope:
                await flow.run(state, run_id=run_id)
        except TimeoutError:
            if scope.expired():
                raise WorkflowTimeoutError(run_id, timeout_ms) from None
            raise

    async def _check_agents(self, config: FlowConfig, run_id: str) -> None:
        unavailable = []
        for agent in sorted(config.referenced_agents()):
            if not self._registry.is_registered(agent) or not await self._registry.health_check(agent):
                unavailable.append(agent)

        if unavailable:
            logger.error(f"Workflow {config.name} rejected ({run_id}): unavailable agents {unavailable}")
            raise AgentUnavailableError(run_id, unavailable)

    def _build_result(
        self,
        flow: ObservableFlow,
        run_id: str,
        final_state: Any,
        started: datetime,
        errors: list[BaseException],
    ) -> WorkflowResult:
        ended = datetime.now()
        context = self._flow_logger.get_context(run_id) or flow.get_context()

        if context is not None:
            metrics = context.metrics
            snapshot = MetricsSnapshot(
                start_time=metrics.start_time,
                end_time=metrics.end_time or ended,
                nodes_executed=metrics.nodes_executed,
                retries=metrics.retries,
                state_updates=metrics.state_updates,
                transitions=metrics.transitions,
            )
            if not errors and context.succeeded is False:
                errors.append(SchedulerError(f"Workflow run reported failure ({run_id})"))
        else:
            snapshot = MetricsSnapshot(start_time=started, end_time=ended)

        return WorkflowResult(
            success=not errors,
            final_state=final_state,
            duration_ms=(ended - started).total_seconds() * 1000,
            steps_executed=snapshot.nodes_executed,
            errors=errors,
            run_id=run_id,
            metrics=snapshot,
        )

    # -------------------------------------------------------------------------
    # Queue management
    # -------------------------------------------------------------------------

    def cancel_queued(self, request_id: str) -> bool:
        """Remove a not-yet-started request and reject it. No effect on running ones."""
        for index, request in enumerate(self._queue):
            if request.id == request_id:
                self._queue.pop(index)
                heapq.heapify(self._queue)
                self._cancel(request, "cancelled")
                logger.info(f"Workflow cancelled: {request_id}")
                return True
        return False

    def clear_queue(self) -> int:
        """Reject every pending request. Returns how many were removed."""
        pending, self._queue = self._queue, []
        for request in pending:
            self._cancel(request, "queue cleared")

        if pending:
            logger.warning(f"Queue cleared: {len(pending)} pending workflows rejected")
        return len(pending)

    def _cancel(self, request: QueuedWorkflow, reason: str) -> None:
        request.status = RunStatus.CANCELLED
        if not request.future.done():
            request.future.set_exception(WorkflowCancelledError(request.id, reason))
        self._finish(request)

    def queue_status(self) -> dict[str, Any]:
        return {
            "queued": len(self._queue),
            "active": len(self._in_flight),
            "max_concurrent": self._max_concurrent,
            "is_processing": self._loop_task is not None and not self._loop_task.done(),
            "next_priority": self._queue[0].priority if self._queue else None,
        }

    def status(self, request_id: str) -> RunStatus | None:
        """Lifecycle status of a known request, or None if unknown."""
        for request in itertools.chain(self._queue, self._in_flight.values()):
            if request.id == request_id:
                return request.status
        finished = self._finished.get(request_id)
        return finished.status if finished else None

    def execution_summary(self) -> dict[str, Any]:
        return self._flow_logger.summary()

    async def shutdown(self, cancel_running: bool = False) -> None:
        """Reject pending requests and wait for in-flight runs to settle.

        Args:
            cancel_running: Cancel in-flight runs instead of waiting for them
        """
        logger.info("Workflow scheduler shutting down...")
        self.clear_queue()

        tasks = list(self._in_flight)
        if cancel_running:
            for task in tasks:
                task.cancel()

        if tasks:
            logger.info(f"Waiting for {len(tasks)} in-flight workflows to complete...")
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)
        logger.info("Workflow scheduler stopped")
