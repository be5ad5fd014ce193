"""Agent registry: discovery, dependency validation and health checks.

Stores named node templates with metadata. Lookups hand out clones, never
the stored template, so no run can mutate another run's agent.

Usage:
    ```python
    registry = AgentRegistry()
    registry.register(
        "pricing",
        PricingAgent(),
        AgentMetadata(
            name="pricing",
            dependencies=["data-collection"],
            capabilities=["market-pricing"],
        ),
    )

    agent = registry.get("pricing")   # fresh clone
    report = registry.validate_dependencies()
    if not report.valid:
        print(report.errors)
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from threading import RLock
from typing import Any

from pydealflow.core.node import BaseNode
from pydealflow.models import AgentMetadata, RegisteredAgent

logger = logging.getLogger(__name__)


@dataclass
class DependencyReport:
    """Result of AgentRegistry.validate_dependencies()."""

    errors: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass
class RegistryStats:
    total_agents: int
    enabled_agents: int
    unique_capabilities: int
    healthy_agents: int
    oldest_agent: str | None
    most_recently_used: str | None


class AgentRegistry:
    """Keyed store of agent templates.

    Mutations are serialized with a re-entrant lock; reads of a single
    record are atomic under the GIL.
    """

    def __init__(self):
        self._agents: dict[str, RegisteredAgent] = {}
        self._lock = RLock()

    def register(
        self,
        name: str,
        template: BaseNode,
        metadata: AgentMetadata | dict[str, Any] | None = None,
    ) -> AgentRegistry:
        """Store (or overwrite) an agent template.

        Missing metadata fields take their defaults (3 retries, 30s
        timeout). Dependencies are not checked here; see
        validate_dependencies().
        """
        if metadata is None:
            meta = AgentMetadata(name=name)
        elif isinstance(metadata, AgentMetadata):
            meta = replace(metadata, name=name)
        else:
            meta = AgentMetadata(name=name, **{k: v for k, v in metadata.items() if k != "name"})

        with self._lock:
            if name in self._agents:
                logger.warning(f"Agent '{name}' already registered, overwriting")
            self._agents[name] = RegisteredAgent(metadata=meta, template=template)

        logger.info(f"Agent registered: {name} v{meta.version}")
        return self

    def get(self, name: str) -> BaseNode | None:
        """Return a clone of the agent, or None if it is unknown or disabled."""
        registered = self._agents.get(name)
        if registered is None or not registered.enabled:
            return None

        registered.last_used = datetime.now()
        agent = registered.template.clone()
        agent.name = name if agent.name == type(agent).__name__ else agent.name
        return agent

    def get_metadata(self, name: str) -> AgentMetadata | None:
        registered = self._agents.get(name)
        return registered.metadata if registered else None

    def is_registered(self, name: str) -> bool:
        """True if `name` is registered and enabled."""
        registered = self._agents.get(name)
        return registered is not None and registered.enabled

    def list_enabled(self) -> list[str]:
        return [name for name, agent in self._agents.items() if agent.enabled]

    def list_agent_details(self) -> list[RegisteredAgent]:
        return [agent for agent in self._agents.values() if agent.enabled]

    def find_by_capability(self, capability: str) -> list[str]:
        return [
            agent.name
            for agent in self.list_agent_details()
            if capability in agent.metadata.capabilities
        ]

    def find_entry_points(self) -> list[str]:
        """Enabled agents that declare no dependencies."""
        return [agent.name for agent in self.list_agent_details() if not agent.metadata.dependencies]

    def dependency_graph(self) -> dict[str, list[str]]:
        return {agent.name: list(agent.metadata.dependencies) for agent in self.list_agent_details()}

    def validate_dependencies(self) -> DependencyReport:
        """Report every declared dependency that is not a registered agent.

        Violations are collected, not raised; the caller decides whether to
        abort.
        """
        enabled = set(self.list_enabled())
        report = DependencyReport()
        for agent in self.list_agent_details():
            for dependency in agent.metadata.dependencies:
                if dependency not in enabled:
                    report.errors.append(
                        f"Agent '{agent.name}' depends on '{dependency}' which is not registered"
                    )
        return report

    def set_enabled(self, name: str, enabled: bool) -> bool:
        """Soft-enable or disable an agent. Returns False if unknown."""
        with self._lock:
            registered = self._agents.get(name)
            if registered is None:
                return False
            registered.enabled = enabled
            registered.healthy = enabled

        logger.info(f"Agent {name} {'enabled' if enabled else 'disabled'}")
        return True

    def unregister(self, name: str) -> bool:
        with self._lock:
            removed = self._agents.pop(name, None)

        if removed is not None:
            logger.info(f"Agent unregistered: {name}")
        return removed is not None

    async def health_check(self, name: str) -> bool:
        """Cheap liveness probe: the agent clones and its ping() succeeds."""
        registered = self._agents.get(name)
        if registered is None or not registered.enabled:
            return False

        try:
            healthy = bool(await registered.template.clone().ping())
        except Exception as e:
            logger.error(f"Health check failed for agent {name}: {e}")
            healthy = False

        registered.healthy = healthy
        return healthy

    async def health_check_all(self) -> dict[str, bool]:
        return {name: await self.health_check(name) for name in self.list_enabled()}

    def stats(self) -> RegistryStats:
        agents = self.list_agent_details()
        capabilities = {cap for agent in agents for cap in agent.metadata.capabilities}

        oldest = min(agents, key=lambda a: a.created_at, default=None)
        used = [a for a in agents if a.last_used is not None]
        most_recent = max(used, key=lambda a: a.last_used, default=None)

        return RegistryStats(
            total_agents=len(self._agents),
            enabled_agents=len(agents),
            unique_capabilities=len(capabilities),
            healthy_agents=sum(1 for a in self._agents.values() if a.healthy),
            oldest_agent=oldest.name if oldest else None,
            most_recently_used=most_recent.name if most_recent else None,
        )

    def clear(self) -> None:
        with self._lock:
            self._agents.clear()
        logger.info("Agent registry cleared")

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, name: object) -> bool:
        return name in self._agents
