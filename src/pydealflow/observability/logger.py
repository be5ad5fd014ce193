"""
FlowLogger - structured run events, per-run metrics and log sinks.

Every observable run owns a RunContext keyed by its run id. Each event is
appended to that context's log and then handed to every registered sink.
Sinks are plain callables; a sink that raises is reported through the
module logger and never interrupts the run that produced the event.

Contexts outlive their runs so callers can inspect metrics and logs after
the fact. cleanup() discards finished contexts older than a given age.

Usage:
    ```python
    flow_logger = FlowLogger(sinks=[logging_sink])

    ctx = flow_logger.start_run(run_id, "standard-deal-creation")
    flow_logger.log_node_start(run_id, "pricing")
    flow_logger.log_node_complete(run_id, "pricing", "validate", 12.5)
    flow_logger.complete_run(run_id, success=True)

    print(flow_logger.summary())
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from threading import RLock
from typing import Any

from pydealflow.core.node import DEFAULT_ACTION
from pydealflow.models import EventType, LogEntry, LogLevel, RunContext

logger = logging.getLogger(__name__)

events_logger = logging.getLogger("pydealflow.events")

LogSink = Callable[[LogEntry], None]

_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def logging_sink(entry: LogEntry) -> None:
    """Forward an entry to the `pydealflow.events` logger at the mapped level."""
    level = _LEVELS[entry.level]
    if not events_logger.isEnabledFor(level):
        return

    suffix = f" {entry.data}" if entry.data else ""
    events_logger.log(
        level,
        f"{entry}{suffix}",
        exc_info=entry.error if entry.level == LogLevel.ERROR else None,
    )


class FlowLogger:
    """Collects run events and metrics, keyed by run id.

    Events for an unknown run id are still dispatched to sinks but are not
    recorded anywhere.
    """

    def __init__(self, sinks: list[LogSink] | None = None):
        self._contexts: dict[str, RunContext] = {}
        self._sinks: list[LogSink] = list(sinks or [])
        self._lock = RLock()

    # -------------------------------------------------------------------------
    # Sinks
    # -------------------------------------------------------------------------

    def add_sink(self, sink: LogSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: LogSink) -> bool:
        try:
            self._sinks.remove(sink)
        except ValueError:
            return False
        return True

    @property
    def sinks(self) -> list[LogSink]:
        return list(self._sinks)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def start_run(self, run_id: str, flow_name: str) -> RunContext:
        context = RunContext(run_id=run_id, flow_name=flow_name)
        with self._lock:
            if run_id in self._contexts:
                logger.warning(f"Run {run_id} already tracked, replacing its context")
            self._contexts[run_id] = context

        self._emit(
            run_id,
            LogLevel.INFO,
            EventType.FLOW_START,
            f"Flow started: {flow_name}",
            data={"flow_name": flow_name},
        )
        return context

    def complete_run(
        self,
        run_id: str,
        success: bool = True,
        error: BaseException | None = None,
    ) -> RunContext | None:
        """Finalize a run's context and emit FLOW_COMPLETE or FLOW_ERROR."""
        context = self._contexts.get(run_id)
        if context is None:
            return None

        context.metrics.end_time = datetime.now()
        context.succeeded = success

        self._emit(
            run_id,
            LogLevel.INFO if success else LogLevel.ERROR,
            EventType.FLOW_COMPLETE if success else EventType.FLOW_ERROR,
            f"Flow {'completed' if success else 'failed'}: {context.flow_name}",
            data={"duration_ms": context.metrics.duration_ms},
            error=error,
            metrics=context.metrics.snapshot(),
        )
        return context

    # -------------------------------------------------------------------------
    # Step events
    # -------------------------------------------------------------------------

    def log_node_start(self, run_id: str, node_name: str, params: dict[str, Any] | None = None) -> None:
        context = self._contexts.get(run_id)
        if context is not None:
            context.metrics.nodes_executed += 1

        self._emit(
            run_id,
            LogLevel.INFO,
            EventType.NODE_START,
            f"Node started: {node_name}",
            node_name=node_name,
            data={"params": dict(params)} if params else None,
        )

    def log_node_complete(
        self,
        run_id: str,
        node_name: str,
        action: str | None,
        duration_ms: float,
    ) -> None:
        self._emit(
            run_id,
            LogLevel.INFO,
            EventType.NODE_COMPLETE,
            f"Node completed: {node_name} → {action or DEFAULT_ACTION}",
            node_name=node_name,
            data={"action": action, "duration_ms": duration_ms},
        )

        if action:
            self.log_transition(run_id, node_name, action)

    def log_node_error(self, run_id: str, node_name: str, error: BaseException) -> None:
        context = self._contexts.get(run_id)
        if context is not None:
            context.metrics.errors += 1

        self._emit(
            run_id,
            LogLevel.ERROR,
            EventType.NODE_ERROR,
            f"Node error: {node_name}: {error}",
            node_name=node_name,
            data={"error_type": type(error).__name__},
            error=error,
        )

    def log_node_retry(
        self,
        run_id: str,
        node_name: str,
        attempt: int,
        max_attempts: int,
        error: BaseException | None = None,
    ) -> None:
        context = self._contexts.get(run_id)
        if context is not None:
            context.metrics.retries += 1

        self._emit(
            run_id,
            LogLevel.WARN,
            EventType.NODE_RETRY,
            f"Node retry: {node_name} ({attempt}/{max_attempts})",
            node_name=node_name,
            data={"attempt": attempt, "max_attempts": max_attempts},
            error=error,
        )

    def log_state_update(
        self,
        run_id: str,
        node_name: str,
        field: str,
        old_value: Any,
        new_value: Any,
    ) -> None:
        context = self._contexts.get(run_id)
        if context is not None:
            context.metrics.state_updates += 1

        self._emit(
            run_id,
            LogLevel.DEBUG,
            EventType.STATE_UPDATE,
            f"State updated: {field}",
            node_name=node_name,
            data={"field": field, "old_value": old_value, "new_value": new_value},
        )

    def log_transition(self, run_id: str, from_node: str, action: str) -> None:
        context = self._contexts.get(run_id)
        if context is not None:
            context.metrics.transitions += 1

        self._emit(
            run_id,
            LogLevel.INFO,
            EventType.TRANSITION,
            f"Transition: {from_node} → {action}",
            node_name=from_node,
            data={"from_node": from_node, "action": action},
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_context(self, run_id: str) -> RunContext | None:
        return self._contexts.get(run_id)

    def get_active_runs(self) -> list[RunContext]:
        return [ctx for ctx in self._contexts.values() if ctx.is_active]

    def summary(self) -> dict[str, Any]:
        """Aggregate over every tracked run.

        Returns:
            active_runs, total_runs, avg_duration_ms (finished runs),
            success_rate (percent of finished runs), total_errors
        """
        contexts = list(self._contexts.values())
        finished = [ctx for ctx in contexts if not ctx.is_active]
        succeeded = [ctx for ctx in finished if ctx.succeeded]

        total_duration = sum(ctx.metrics.duration_ms or 0 for ctx in finished)

        return {
            "active_runs": len(contexts) - len(finished),
            "total_runs": len(contexts),
            "avg_duration_ms": total_duration / len(finished) if finished else 0.0,
            "success_rate": len(succeeded) / len(finished) * 100 if finished else 0.0,
            "total_errors": sum(ctx.metrics.errors for ctx in contexts),
        }

    def cleanup(self, older_than_hours: float = 24) -> int:
        """Discard finished runs that ended before the cutoff. Returns the count."""
        cutoff = datetime.now() - timedelta(hours=older_than_hours)

        with self._lock:
            expired = [
                run_id
                for run_id, ctx in self._contexts.items()
                if ctx.end_time is not None and ctx.end_time < cutoff
            ]
            for run_id in expired:
                del self._contexts[run_id]

        if expired:
            logger.info(f"Cleaned up {len(expired)} old run contexts")
        return len(expired)

    def __len__(self) -> int:
        return len(self._contexts)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    def _emit(
        self,
        run_id: str,
        level: LogLevel,
        event_type: EventType,
        message: str,
        *,
        node_name: str | None = None,
        data: dict[str, Any] | None = None,
        error: BaseException | None = None,
        metrics: dict[str, Any] | None = None,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=datetime.now(),
            level=level,
            event_type=event_type,
            run_id=run_id,
            message=message,
            node_name=node_name,
            data=data,
            error=error,
            metrics=metrics,
        )

        context = self._contexts.get(run_id)
        if context is not None:
            context.logs.append(entry)

        for sink in list(self._sinks):
            try:
                sink(entry)
            except Exception as e:
                logger.error(f"Log sink {sink!r} failed on {event_type}: {e}")

        return entry
