"""Exception types raised by the registry, configuration manager and scheduler.

Each error carries enough context to act on without parsing its message:
the offending names, and for run-scoped errors the run id.
"""

from __future__ import annotations


class PyDealFlowError(Exception):
    """Base class for all pydealflow errors."""


class ConfigValidationError(PyDealFlowError):
    """A flow configuration failed validation and was not registered."""

    def __init__(self, name: str, errors: list[str], warnings: list[str] | None = None):
        self.name = name
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(f"Flow config '{name}' validation failed: {', '.join(self.errors)}")


class FlowNotFoundError(PyDealFlowError):
    """No flow configuration is registered under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Workflow configuration not found: {name}")


class AgentNotFoundError(PyDealFlowError):
    """An agent is not registered, or is disabled."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Agent not found in registry: {name}")


class AgentUnavailableError(PyDealFlowError):
    """Agents required by a flow are missing or unhealthy at run start."""

    def __init__(self, run_id: str, agents: list[str]):
        self.run_id = run_id
        self.agents = list(agents)
        super().__init__(f"Required agents unavailable: {', '.join(self.agents)} ({run_id})")


class WorkflowTimeoutError(PyDealFlowError):
    """A run exceeded its wall-clock budget."""

    def __init__(self, run_id: str, timeout_ms: int):
        self.run_id = run_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Workflow execution timed out after {timeout_ms}ms ({run_id})")


class WorkflowCancelledError(PyDealFlowError):
    """A queued request was cancelled before it started."""

    def __init__(self, run_id: str, reason: str = "cancelled"):
        self.run_id = run_id
        self.reason = reason
        super().__init__(f"Workflow {reason}: {run_id}")


class SchedulerError(PyDealFlowError):
    """Scheduler operation failed."""
