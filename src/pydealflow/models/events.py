"""Run events, metrics and per-run execution context."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydealflow.models.status import EventType, LogLevel


@dataclass
class RunMetrics:
    """Aggregate counters for one run."""

    start_time: datetime = field(default_factory=datetime.now)
    end_time: datetime | None = None
    nodes_executed: int = 0
    errors: int = 0
    retries: int = 0
    state_updates: int = 0
    transitions: int = 0

    @property
    def duration_ms(self) -> float | None:
        """Elapsed milliseconds, or None while the run is still active."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def snapshot(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "nodes_executed": self.nodes_executed,
            "errors": self.errors,
            "retries": self.retries,
            "state_updates": self.state_updates,
            "transitions": self.transitions,
        }


@dataclass(frozen=True)
class LogEntry:
    """One structured event, appended to the run log and sent to every sink."""

    timestamp: datetime
    level: LogLevel
    event_type: EventType
    run_id: str
    message: str
    node_name: str | None = None
    data: dict[str, Any] | None = None
    error: BaseException | None = None
    metrics: dict[str, Any] | None = None

    def __str__(self) -> str:
        node = f" [{self.node_name}]" if self.node_name else ""
        return f"{self.event_type} {self.run_id[-8:]}{node} {self.message}"


@dataclass
class RunContext:
    """Execution context of a single run.

    Created when the run starts, finalized when it completes or fails,
    and kept until FlowLogger.cleanup() discards it.
    """

    run_id: str
    flow_name: str
    metrics: RunMetrics = field(default_factory=RunMetrics)
    logs: list[LogEntry] = field(default_factory=list)
    succeeded: bool | None = None
    """None while active, then True/False once finalized."""

    @property
    def start_time(self) -> datetime:
        return self.metrics.start_time

    @property
    def end_time(self) -> datetime | None:
        return self.metrics.end_time

    @property
    def is_active(self) -> bool:
        return self.metrics.end_time is None

    def events(self, event_type: EventType) -> list[LogEntry]:
        """Entries of one kind, in emission order."""
        return [entry for entry in self.logs if entry.event_type == event_type]
