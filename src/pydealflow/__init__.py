"""
pydealflow: workflow execution core for cooperating deal agents.

Small units of work (nodes) are composed into labelled graphs and driven
against a mutable shared state. On top of the engine sit an agent
registry, declarative flow configurations, observable runs and a
priority scheduler with bounded concurrency.

Example:
    ```python
    import asyncio
    from pydealflow import ExecutionOptions, FlowConfig, Node, Runtime

    class Echo(Node):
        def finalize(self, shared, prep_res, exec_res):
            shared.setdefault("visited", []).append(self.name)
            return self.params.get("action")

    async def main():
        runtime = Runtime.create()
        runtime.registry.register("echo", Echo())
        runtime.configs.register_config(FlowConfig.from_dict({
            "name": "two-step",
            "start_node": "A",
            "nodes": {
                "A": {"agent": "echo", "params": {"action": "next"},
                      "transitions": [{"action": "next", "target": "B"}]},
                "B": {"agent": "echo"},
            },
        }))

        result = await runtime.scheduler.execute(
            "two-step", {}, ExecutionOptions(timeout_ms=5_000)
        )
        print(result.steps_executed)  # 2

    asyncio.run(main())
    ```
"""

# Engine
from pydealflow.core import (
    DEFAULT_ACTION,
    SKIP_ACTION,
    BaseNode,
    BatchFlow,
    BatchNode,
    Flow,
    Node,
    ParallelBatchFlow,
    ParallelBatchNode,
)

# Errors
from pydealflow.errors import (
    AgentNotFoundError,
    AgentUnavailableError,
    ConfigValidationError,
    FlowNotFoundError,
    PyDealFlowError,
    SchedulerError,
    WorkflowCancelledError,
    WorkflowTimeoutError,
)

# Scheduling
from pydealflow.executor import WorkflowScheduler

# Value types
from pydealflow.models import (
    AgentMetadata,
    EventType,
    ExecutionOptions,
    FlowConfig,
    FlowNodeConfig,
    FlowTransition,
    LogEntry,
    LogLevel,
    QueuedWorkflow,
    RetryableError,
    RetryPolicy,
    RunContext,
    RunStatus,
    ValidationResult,
    WorkflowResult,
)

# Observability
from pydealflow.observability import (
    FlowLogger,
    ObservableBatchFlow,
    ObservableFlow,
    ObservableParallelBatchFlow,
    logging_sink,
)

# Registries
from pydealflow.registry import AgentRegistry, FlowConfigManager, GuardedNode
from pydealflow.runtime import Runtime

__version__ = "0.1.0"

__all__ = [
    # Engine
    "BaseNode",
    "Node",
    "BatchNode",
    "ParallelBatchNode",
    "Flow",
    "BatchFlow",
    "ParallelBatchFlow",
    "DEFAULT_ACTION",
    "SKIP_ACTION",
    # Value types
    "AgentMetadata",
    "EventType",
    "ExecutionOptions",
    "FlowConfig",
    "FlowNodeConfig",
    "FlowTransition",
    "LogEntry",
    "LogLevel",
    "QueuedWorkflow",
    "RetryPolicy",
    "RetryableError",
    "RunContext",
    "RunStatus",
    "ValidationResult",
    "WorkflowResult",
    # Registries
    "AgentRegistry",
    "FlowConfigManager",
    "GuardedNode",
    # Observability
    "FlowLogger",
    "ObservableFlow",
    "ObservableBatchFlow",
    "ObservableParallelBatchFlow",
    "logging_sink",
    # Scheduling
    "WorkflowScheduler",
    "Runtime",
    # Errors
    "PyDealFlowError",
    "ConfigValidationError",
    "FlowNotFoundError",
    "AgentNotFoundError",
    "AgentUnavailableError",
    "WorkflowTimeoutError",
    "WorkflowCancelledError",
    "SchedulerError",
    # Metadata
    "__version__",
]
