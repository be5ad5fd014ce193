"""Agent and flow-configuration registries.

- AgentRegistry: named agent templates, dependency validation, health checks
- FlowConfigManager: validated flow configurations, graph construction
"""

from pydealflow.registry.agents import AgentRegistry, DependencyReport, RegistryStats
from pydealflow.registry.flows import FlowConfigManager, GuardedNode

__all__ = [
    "AgentRegistry",
    "DependencyReport",
    "RegistryStats",
    "FlowConfigManager",
    "GuardedNode",
]
