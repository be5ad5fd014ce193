"""Process-level bundle of the registry, configuration store, logger and scheduler.

Build one Runtime at startup (or one per test) and pass it, or its
members, to whatever needs them. There are no module-level singletons.

Example:
    ```python
    runtime = Runtime.create(max_concurrent=5, sinks=[logging_sink])
    runtime.registry.register("echo", EchoAgent())
    runtime.configs.register_config(config)

    result = await runtime.scheduler.execute("deal-intake", {})
    ```
"""

from __future__ import annotations

from dataclasses import dataclass

from pydealflow.executor import DEFAULT_MAX_CONCURRENT, WorkflowScheduler
from pydealflow.observability import FlowLogger, LogSink
from pydealflow.registry import AgentRegistry, FlowConfigManager


@dataclass
class Runtime:
    registry: AgentRegistry
    configs: FlowConfigManager
    flow_logger: FlowLogger
    scheduler: WorkflowScheduler

    @classmethod
    def create(
        cls,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        sinks: list[LogSink] | None = None,
        from_env: bool = False,
    ) -> Runtime:
        """Wire a fresh registry, configuration store, logger and scheduler.

        Args:
            max_concurrent: Scheduler concurrency ceiling
            sinks: Log sinks receiving every run event
            from_env: Let PYDEALFLOW_* environment variables override settings
        """
        registry = AgentRegistry()
        flow_logger = FlowLogger(sinks)
        configs = FlowConfigManager(registry, flow_logger)
        scheduler = WorkflowScheduler(registry, configs, flow_logger, max_concurrent)
        if from_env:
            scheduler.from_env()
        return cls(registry=registry, configs=configs, flow_logger=flow_logger, scheduler=scheduler)

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
