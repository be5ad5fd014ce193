"""Core data models for workflow execution.

Defines value types for retry behavior, agent metadata, declarative flow
configuration, run events and scheduled workflow requests.

Design: Dependency-Free Models
These types have no dependencies on core, registry or executor modules to
prevent circular imports and enable clean layering.
"""

from pydealflow.models.agent import AgentMetadata, RegisteredAgent
from pydealflow.models.events import LogEntry, RunContext, RunMetrics
from pydealflow.models.flow_config import (
    FlowConfig,
    FlowNodeConfig,
    FlowTransition,
    Guard,
    ValidationResult,
)
from pydealflow.models.retry import RetryableError, RetryPolicy
from pydealflow.models.status import EventType, LogLevel, RunStatus
from pydealflow.models.workflow import (
    ExecutionOptions,
    MetricsSnapshot,
    QueuedWorkflow,
    WorkflowResult,
)

__all__ = [
    "AgentMetadata",
    "RegisteredAgent",
    "LogEntry",
    "RunContext",
    "RunMetrics",
    "FlowConfig",
    "FlowNodeConfig",
    "FlowTransition",
    "Guard",
    "ValidationResult",
    "RetryPolicy",
    "RetryableError",
    "EventType",
    "LogLevel",
    "RunStatus",
    "ExecutionOptions",
    "MetricsSnapshot",
    "QueuedWorkflow",
    "WorkflowResult",
]
