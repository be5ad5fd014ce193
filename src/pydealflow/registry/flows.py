"""Declarative flow configuration: validation and graph construction.

A FlowConfigManager turns a FlowConfig (node name → agent, params,
labelled transitions) into a wired, observable graph built from fresh
registry clones. Configurations are validated on registration: structural
errors refuse the registration, softer findings (unreachable nodes,
cycles, terminal nodes) are logged as warnings.

Cycles are allowed. A deal workflow legitimately loops back to data
collection when validation finds missing fields; the warning exists so
accidental loops are visible.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from threading import RLock
from typing import Any

from pydealflow.core.node import SKIP_ACTION, BaseNode, Node
from pydealflow.errors import AgentNotFoundError, ConfigValidationError, FlowNotFoundError
from pydealflow.models import FlowConfig, FlowNodeConfig, FlowTransition, Guard, ValidationResult
from pydealflow.observability.logger import FlowLogger
from pydealflow.observability.observable import ObservableFlow
from pydealflow.registry.agents import AgentRegistry

logger = logging.getLogger(__name__)


class GuardedNode(BaseNode):
    """Edge wrapper that enters `target` only when `guard(shared)` holds.

    The wrapper has no successors of its own: routing after it uses the
    target's successors, so a rejected guard's "skip" action follows the
    target's `skip` transition if it has one and otherwise ends the flow.
    Transition params are applied to the target on entry.
    """

    def __init__(
        self,
        target: BaseNode,
        guard: Guard | None = None,
        edge_params: dict[str, Any] | None = None,
    ):
        super().__init__(name=target.name)
        self.target = target
        self.guard = guard
        self.params = dict(edge_params or {})

    async def _run(self, shared: Any) -> str | None:
        if self.guard is not None and not self.guard(shared):
            logger.info(f"Skipping node '{self.target.name}': guard not satisfied")
            return SKIP_ACTION

        delegate = self.target.clone()
        delegate.set_params({**delegate.params, **self.params})
        return await delegate._run(shared)

    def get_next_node(self, action: str | None = None) -> BaseNode | None:
        return self.target.get_next_node(action)

    async def ping(self) -> bool:
        return await self.target.ping()


class FlowConfigManager:
    """Registry of named flow configurations.

    Usage:
        ```python
        manager = FlowConfigManager(registry, flow_logger)
        manager.register_config(config)
        flow = manager.create_flow("standard-deal-creation")
        await flow.run(shared_state)
        ```
    """

    def __init__(self, registry: AgentRegistry, flow_logger: FlowLogger | None = None):
        self._registry = registry
        self._flow_logger = flow_logger or FlowLogger()
        self._configs: dict[str, FlowConfig] = {}
        self._lock = RLock()

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    @property
    def flow_logger(self) -> FlowLogger:
        return self._flow_logger

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_config(self, config: FlowConfig | dict[str, Any]) -> ValidationResult:
        """Validate and store a configuration, overwriting any of the same name.

        Raises:
            ConfigValidationError: If validation reports errors
        """
        if isinstance(config, dict):
            config = FlowConfig.from_dict(config)

        result = self.validate_config(config)
        if not result.is_valid:
            raise ConfigValidationError(config.name, result.errors, result.warnings)

        if result.warnings:
            logger.warning(f"Flow config warnings for '{config.name}': {result.warnings}")

        with self._lock:
            self._configs[config.name] = config

        logger.info(f"Flow config registered: {config.name} v{config.version}")
        return result

    def get_config(self, name: str) -> FlowConfig | None:
        return self._configs.get(name)

    def list_configs(self) -> list[str]:
        return list(self._configs)

    def unregister_config(self, name: str) -> bool:
        with self._lock:
            return self._configs.pop(name, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._configs.clear()
        logger.info("Flow configurations cleared")

    def export_configs(self) -> dict[str, dict[str, Any]]:
        """Plain-data form of every configuration (guards are not exported)."""
        return {name: config.to_dict() for name, config in self._configs.items()}

    def import_configs(self, data: dict[str, dict[str, Any] | FlowConfig]) -> list[str]:
        """Register each configuration; invalid ones are logged and skipped.

        Returns:
            Names of the configurations that were registered
        """
        imported = []
        for name, raw in data.items():
            config = raw if isinstance(raw, FlowConfig) else FlowConfig.from_dict(raw)
            if not config.name:
                config.name = name
            try:
                self.register_config(config)
            except ConfigValidationError as e:
                logger.error(f"Failed to import config '{name}': {e}")
                continue
            imported.append(config.name)
        return imported

    # -------------------------------------------------------------------------
    # Graph construction
    # -------------------------------------------------------------------------

    def create_flow(self, name: str) -> ObservableFlow:
        """Build a fresh executable graph for the named configuration.

        Every node is a new registry clone named after its config key, with
        global params, node params, retry and timeout overrides applied.

        Raises:
            FlowNotFoundError: If no configuration has this name
            AgentNotFoundError: If a referenced agent is missing or disabled
        """
        config = self._configs.get(name)
        if config is None:
            raise FlowNotFoundError(name)

        node_map = {
            node_name: self._build_node(config, node_name, node_config)
            for node_name, node_config in config.nodes.items()
        }

        for node_name, node_config in config.nodes.items():
            current = node_map[node_name]
            for transition in node_config.transitions:
                target = node_map.get(transition.target)
                if target is None:
                    logger.warning(f"Target node not found: {transition.target}")
                    continue

                if transition.guard is not None or transition.params:
                    current.on(
                        transition.action,
                        GuardedNode(target, transition.guard, transition.params),
                    )
                else:
                    current.on(transition.action, target)

        return ObservableFlow(node_map[config.start_node], name=config.name, flow_logger=self._flow_logger)

    def _build_node(self, config: FlowConfig, node_name: str, node_config: FlowNodeConfig) -> BaseNode:
        agent = self._registry.get(node_config.agent)
        if agent is None:
            raise AgentNotFoundError(node_config.agent)

        agent.name = node_name
        agent.set_params({**agent.params, **config.global_params, **node_config.params})

        retry = node_config.retry or config.global_retry
        if retry is not None or node_config.timeout_ms is not None:
            if isinstance(agent, Node):
                if retry is not None:
                    agent.retry_policy = retry
                if node_config.timeout_ms is not None:
                    agent.timeout = node_config.timeout_ms / 1000
            else:
                logger.warning(
                    f"Node '{node_name}' ({type(agent).__name__}) does not support "
                    "retry/timeout overrides"
                )

        return agent

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_config(self, config: FlowConfig) -> ValidationResult:
        result = ValidationResult()
        errors, warnings = result.errors, result.warnings

        if not config.name:
            errors.append("Flow name is required")
        if not config.start_node:
            errors.append("Start node is required")
        if not config.nodes:
            errors.append("At least one node configuration is required")
        if config.start_node and config.start_node not in config.nodes:
            errors.append(f"Start node '{config.start_node}' not found in nodes configuration")

        for node_name, node_config in config.nodes.items():
            if not self._registry.is_registered(node_config.agent):
                errors.append(
                    f"Agent '{node_config.agent}' for node '{node_name}' not found in registry"
                )

            for transition in node_config.transitions:
                if not transition.action:
                    errors.append(f"Transition in node '{node_name}' missing action")
                if not transition.target:
                    errors.append(
                        f"Transition '{transition.action}' in node '{node_name}' missing target"
                    )
                elif transition.target not in config.nodes:
                    errors.append(
                        f"Transition target '{transition.target}' in node '{node_name}' "
                        "not found in nodes"
                    )

            if not node_config.transitions:
                warnings.append(f"Node '{node_name}' has no transitions (might be terminal)")

        if config.start_node in config.nodes:
            reachable = self.find_reachable_nodes(config)
            unreachable = [name for name in config.nodes if name not in reachable]
            if unreachable:
                warnings.append(f"Unreachable nodes found: {', '.join(unreachable)}")

            cycles = self.find_cycles(config)
            if cycles:
                warnings.append(f"Potential cycles detected: {', '.join(cycles)}")

        return result

    @staticmethod
    def find_reachable_nodes(config: FlowConfig) -> set[str]:
        """Breadth-first walk over transitions from the start node."""
        reachable: set[str] = set()
        queue = deque([config.start_node])

        while queue:
            current = queue.popleft()
            if current in reachable:
                continue
            reachable.add(current)

            node_config = config.nodes.get(current)
            if node_config is None:
                continue
            for transition in node_config.transitions:
                if transition.target not in reachable:
                    queue.append(transition.target)

        return reachable

    @staticmethod
    def find_cycles(config: FlowConfig) -> list[str]:
        """Depth-first search for back-edges; each cycle is reported as a path.

        Iterative, so chains longer than the recursion limit are fine.
        """

        def edges(name: str) -> Iterator[FlowTransition]:
            node_config = config.nodes.get(name)
            return iter(node_config.transitions if node_config else ())

        cycles: list[str] = []
        start = config.start_node
        visited: set[str] = {start}
        rec_stack: set[str] = {start}
        path: list[str] = [start]
        stack: list[tuple[str, Iterator[FlowTransition]]] = [(start, edges(start))]

        while stack:
            node, pending = stack[-1]
            for transition in pending:
                target = transition.target
                if target not in visited:
                    visited.add(target)
                    rec_stack.add(target)
                    path.append(target)
                    stack.append((target, edges(target)))
                    break
                if target in rec_stack:
                    loop_start = path.index(target)
                    cycles.append(" → ".join([*path[loop_start:], target]))
            else:
                stack.pop()
                rec_stack.discard(node)
                path.pop()

        return cycles
