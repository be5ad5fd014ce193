"""Run observability: structured events, metrics and instrumented flows."""

from pydealflow.observability.diff import StateSnapshot, fingerprint
from pydealflow.observability.logger import FlowLogger, LogSink, logging_sink
from pydealflow.observability.observable import (
    ObservableBatchFlow,
    ObservableFlow,
    ObservableParallelBatchFlow,
    RunTracker,
    new_run_id,
)

__all__ = [
    "FlowLogger",
    "LogSink",
    "logging_sink",
    "ObservableFlow",
    "ObservableBatchFlow",
    "ObservableParallelBatchFlow",
    "RunTracker",
    "new_run_id",
    "StateSnapshot",
    "fingerprint",
]
