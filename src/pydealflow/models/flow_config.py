"""Declarative flow configuration types.

A FlowConfig describes a graph of named nodes, each backed by a registered
agent, connected by labelled transitions. It carries no runtime state and
can be instantiated into a fresh executable graph any number of times.

Configurations round-trip through plain dicts (to_dict/from_dict) so they
can be exported as JSON. Guard predicates are Python callables and are
therefore dropped on export.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydealflow.models.retry import RetryPolicy

Guard = Callable[[Any], bool]
"""Predicate evaluated against the shared state before entering a target."""

DEFAULT_FLOW_VERSION = "1.0.0"


@dataclass
class FlowTransition:
    """Labelled edge from one node to another."""

    action: str
    """Action label returned by the source node's finalize phase."""

    target: str
    """Name of the target node in the same configuration."""

    guard: Guard | None = None
    """Optional predicate; the target is skipped when it returns False."""

    params: dict[str, Any] = field(default_factory=dict)
    """Extra parameters applied to the target when entered via this edge."""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action, "target": self.target}
        if self.params:
            data["params"] = dict(self.params)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowTransition:
        return cls(
            action=data.get("action", ""),
            target=data.get("target", ""),
            guard=data.get("guard"),
            params=dict(data.get("params") or {}),
        )


@dataclass
class FlowNodeConfig:
    """One node entry: which agent to instantiate and where it may go next."""

    agent: str
    params: dict[str, Any] = field(default_factory=dict)
    transitions: list[FlowTransition] = field(default_factory=list)
    retry: RetryPolicy | None = None
    timeout_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "agent": self.agent,
            "transitions": [t.to_dict() for t in self.transitions],
        }
        if self.params:
            data["params"] = dict(self.params)
        if self.retry is not None:
            data["retry"] = self.retry.to_dict()
        if self.timeout_ms is not None:
            data["timeout_ms"] = self.timeout_ms
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowNodeConfig:
        retry = data.get("retry")
        return cls(
            agent=data.get("agent", ""),
            params=dict(data.get("params") or {}),
            transitions=[
                t if isinstance(t, FlowTransition) else FlowTransition.from_dict(t)
                for t in data.get("transitions") or []
            ],
            retry=RetryPolicy.from_dict(retry) if isinstance(retry, dict) else retry,
            timeout_ms=data.get("timeout_ms"),
        )


@dataclass
class FlowConfig:
    """Complete, named flow configuration.

    Example:
        ```python
        config = FlowConfig(
            name="express-deal",
            start_node="collect",
            nodes={
                "collect": FlowNodeConfig(
                    agent="data-collection",
                    transitions=[FlowTransition("pricing", "price")],
                ),
                "price": FlowNodeConfig(agent="pricing"),
            },
        )
        ```
    """

    name: str
    start_node: str
    nodes: dict[str, FlowNodeConfig] = field(default_factory=dict)
    description: str = ""
    version: str = DEFAULT_FLOW_VERSION
    global_params: dict[str, Any] = field(default_factory=dict)
    global_retry: RetryPolicy | None = None

    def referenced_agents(self) -> set[str]:
        """Names of every agent referenced by a node entry."""
        return {node.agent for node in self.nodes.values()}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "start_node": self.start_node,
            "nodes": {name: node.to_dict() for name, node in self.nodes.items()},
        }
        if self.global_params:
            data["global_params"] = dict(self.global_params)
        if self.global_retry is not None:
            data["global_retry"] = self.global_retry.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowConfig:
        global_retry = data.get("global_retry")
        return cls(
            name=data.get("name", ""),
            start_node=data.get("start_node", ""),
            nodes={
                name: node if isinstance(node, FlowNodeConfig) else FlowNodeConfig.from_dict(node)
                for name, node in (data.get("nodes") or {}).items()
            },
            description=data.get("description", ""),
            version=data.get("version") or DEFAULT_FLOW_VERSION,
            global_params=dict(data.get("global_params") or {}),
            global_retry=(
                RetryPolicy.from_dict(global_retry)
                if isinstance(global_retry, dict)
                else global_retry
            ),
        )


@dataclass
class ValidationResult:
    """Outcome of validating a FlowConfig.

    Errors block registration; warnings are surfaced but do not.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors
