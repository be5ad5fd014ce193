"""Tests for FlowConfigManager: validation, graph construction, guards and export."""

import logging
import sys

import pytest
from conftest import CountingNode, EchoNode, two_step_config

from pydealflow import (
    AgentNotFoundError,
    AgentRegistry,
    ConfigValidationError,
    FlowConfig,
    FlowConfigManager,
    FlowNodeConfig,
    FlowNotFoundError,
    FlowTransition,
    GuardedNode,
    ObservableFlow,
    RetryPolicy,
)


@pytest.fixture
def registry() -> AgentRegistry:
    registry = AgentRegistry()
    registry.register("echo", EchoNode())
    return registry


@pytest.fixture
def configs(registry) -> FlowConfigManager:
    return FlowConfigManager(registry)


def node(action=None, transitions=(), **kwargs) -> FlowNodeConfig:
    params = {"action": action} if action else {}
    return FlowNodeConfig(agent="echo", params=params, transitions=list(transitions), **kwargs)


# ==============================================================================
# Validation
# ==============================================================================


def test_valid_config_registers(configs):
    result = configs.register_config(two_step_config())

    assert result.is_valid
    assert configs.list_configs() == ["two-step"]
    assert configs.get_config("two-step").start_node == "A"
    assert configs.get_config("two-step").version == "1.0.0"


def test_terminal_node_is_only_a_warning(configs):
    result = configs.validate_config(FlowConfig.from_dict(two_step_config()))

    assert result.errors == []
    assert result.warnings == ["Node 'B' has no transitions (might be terminal)"]


@pytest.mark.parametrize(
    "config, expected",
    [
        (FlowConfig(name="", start_node="A", nodes={"A": node()}), "Flow name is required"),
        (FlowConfig(name="f", start_node="", nodes={"A": node()}), "Start node is required"),
        (FlowConfig(name="f", start_node="A"), "At least one node configuration is required"),
        (
            FlowConfig(name="f", start_node="X", nodes={"A": node()}),
            "Start node 'X' not found in nodes configuration",
        ),
        (
            FlowConfig(name="f", start_node="A", nodes={"A": FlowNodeConfig(agent="ghost")}),
            "Agent 'ghost' for node 'A' not found in registry",
        ),
        (
            FlowConfig(name="f", start_node="A", nodes={"A": node(transitions=[FlowTransition("go", "Z")])}),
            "Transition target 'Z' in node 'A' not found in nodes",
        ),
        (
            FlowConfig(name="f", start_node="A", nodes={"A": node(transitions=[FlowTransition("", "A")])}),
            "Transition in node 'A' missing action",
        ),
    ],
)
def test_structural_errors_refuse_registration(configs, config, expected):
    with pytest.raises(ConfigValidationError) as exc_info:
        configs.register_config(config)

    assert expected in exc_info.value.errors
    assert configs.list_configs() == []


def test_disabled_agent_fails_validation(configs, registry):
    registry.set_enabled("echo", False)

    result = configs.validate_config(FlowConfig.from_dict(two_step_config()))
    assert not result.is_valid


def test_unreachable_nodes_warn(configs):
    config = FlowConfig(
        name="f",
        start_node="A",
        nodes={"A": node(), "orphan": node(), "island": node()},
    )
    result = configs.validate_config(config)

    assert result.is_valid
    assert "Unreachable nodes found: orphan, island" in result.warnings


def test_cycles_warn_with_path_but_register(configs, caplog):
    config = FlowConfig(
        name="recollect",
        start_node="A",
        nodes={
            "A": node("next", [FlowTransition("next", "B")]),
            "B": node("retry", [FlowTransition("retry", "A"), FlowTransition("done", "C")]),
            "C": node(),
        },
    )

    with caplog.at_level(logging.WARNING, logger="pydealflow.registry.flows"):
        result = configs.register_config(config)

    assert "Potential cycles detected: A → B → A" in result.warnings
    assert "recollect" in configs.list_configs()
    assert "Potential cycles detected" in caplog.text


def test_self_loop_is_a_cycle():
    config = FlowConfig(name="f", start_node="A", nodes={"A": node("again", [FlowTransition("again", "A")])})
    assert FlowConfigManager.find_cycles(config) == ["A → A"]


def test_chain_longer_than_recursion_limit_registers(configs):
    length = sys.getrecursionlimit() + 500
    names = [f"n{i}" for i in range(length)]
    nodes = {
        name: node("next", [FlowTransition("next", names[i + 1])] if i + 1 < length else [])
        for i, name in enumerate(names)
    }
    nodes[names[-1]].transitions.append(FlowTransition("again", names[-3]))

    result = configs.register_config(FlowConfig(name="long", start_node="n0", nodes=nodes))

    assert result.is_valid
    loop = " → ".join(names[-3:] + [names[-3]])
    assert result.warnings == [f"Potential cycles detected: {loop}"]
    assert "long" in configs.list_configs()


def test_reachable_nodes_follow_transitions():
    config = FlowConfig(
        name="f",
        start_node="A",
        nodes={
            "A": node(transitions=[FlowTransition("x", "B"), FlowTransition("y", "C")]),
            "B": node(transitions=[FlowTransition("z", "D")]),
            "C": node(),
            "D": node(),
            "E": node(transitions=[FlowTransition("w", "A")]),
        },
    )
    assert FlowConfigManager.find_reachable_nodes(config) == {"A", "B", "C", "D"}


# ==============================================================================
# Graph construction
# ==============================================================================


@pytest.mark.asyncio
async def test_create_flow_builds_observable_graph_named_after_config_keys(configs):
    configs.register_config(two_step_config())

    flow = configs.create_flow("two-step")
    shared = {}
    await flow.run(shared)

    assert isinstance(flow, ObservableFlow)
    assert flow.name == "two-step"
    assert shared["visited"] == ["A", "B"]


def test_create_flow_unknown_name(configs):
    with pytest.raises(FlowNotFoundError):
        configs.create_flow("missing")


def test_create_flow_after_agent_unregistered(configs, registry):
    configs.register_config(two_step_config())
    registry.unregister("echo")

    with pytest.raises(AgentNotFoundError):
        configs.create_flow("two-step")


def test_each_create_flow_uses_fresh_instances(configs):
    configs.register_config(two_step_config())

    first = configs.create_flow("two-step")
    second = configs.create_flow("two-step")

    assert first.start_node is not second.start_node
    assert first.start_node.successors["next"] is not second.start_node.successors["next"]


def test_params_and_overrides_are_applied(registry):
    registry.register("counter", CountingNode())
    configs = FlowConfigManager(registry)
    configs.register_config(
        {
            "name": "priced",
            "start_node": "quote",
            "global_params": {"currency": "USD", "region": "us"},
            "global_retry": {"max_attempts": 2},
            "nodes": {
                "quote": {
                    "agent": "counter",
                    "params": {"region": "eu"},
                    "retry": {"max_attempts": 4, "delay_ms": 5},
                    "timeout_ms": 250,
                    "transitions": [{"action": "default", "target": "audit"}],
                },
                "audit": {"agent": "counter"},
            },
        }
    )

    flow = configs.create_flow("priced")
    quote = flow.start_node
    audit = quote.successors["default"]

    assert quote.name == "quote"
    assert quote.params == {"currency": "USD", "region": "eu"}
    assert quote.retry_policy == RetryPolicy.fixed(4, delay_ms=5)
    assert quote.timeout == 0.25
    assert audit.retry_policy.max_attempts == 2
    assert audit.timeout is None


# ==============================================================================
# Guards
# ==============================================================================


def guarded_config(guard, with_skip_route: bool) -> FlowConfig:
    target_transitions = [FlowTransition("skip", "fallback")] if with_skip_route else []
    return FlowConfig(
        name="guarded",
        start_node="A",
        nodes={
            "A": node("next", [FlowTransition("next", "B", guard=guard)]),
            "B": node(transitions=target_transitions),
            "fallback": node(),
        },
    )


@pytest.mark.asyncio
async def test_passing_guard_enters_target(configs):
    configs.register_config(guarded_config(lambda s: s.get("approved", False), with_skip_route=True))

    shared = {"approved": True}
    await configs.create_flow("guarded").run(shared)

    assert shared["visited"] == ["A", "B"]


@pytest.mark.asyncio
async def test_failing_guard_skips_target_and_ends_flow(configs):
    configs.register_config(guarded_config(lambda s: False, with_skip_route=False))

    shared = {}
    result = await configs.create_flow("guarded").run(shared)

    assert shared["visited"] == ["A"]
    assert result == "skip"


@pytest.mark.asyncio
async def test_failing_guard_follows_targets_skip_route(configs):
    configs.register_config(guarded_config(lambda s: False, with_skip_route=True))

    shared = {}
    await configs.create_flow("guarded").run(shared)

    assert shared["visited"] == ["A", "fallback"]


@pytest.mark.asyncio
async def test_guarded_target_keeps_its_successors(configs):
    config = FlowConfig(
        name="chain",
        start_node="A",
        nodes={
            "A": node("next", [FlowTransition("next", "B", guard=lambda s: True)]),
            "B": node("next", [FlowTransition("next", "C")]),
            "C": node(),
        },
    )
    configs.register_config(config)

    shared = {}
    await configs.create_flow("chain").run(shared)

    assert shared["visited"] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_transition_params_apply_to_target(registry):
    seen = []

    class Reads(EchoNode):
        def prepare(self, shared):
            seen.append(dict(self.params))

    registry.register("reads", Reads())
    configs = FlowConfigManager(registry)
    configs.register_config(
        {
            "name": "edge-params",
            "start_node": "A",
            "nodes": {
                "A": {
                    "agent": "echo",
                    "params": {"action": "go"},
                    "transitions": [{"action": "go", "target": "B", "params": {"mode": "express"}}],
                },
                "B": {"agent": "reads", "params": {"mode": "standard", "tier": 1}},
            },
        }
    )

    flow = configs.create_flow("edge-params")
    assert isinstance(flow.start_node.successors["go"], GuardedNode)

    await flow.run({})
    assert seen == [{"mode": "express", "tier": 1}]


# ==============================================================================
# Export / import
# ==============================================================================


def test_export_import_restores_configs_without_guards(registry):
    source = FlowConfigManager(registry)
    source.register_config(two_step_config())
    source.register_config(guarded_config(lambda s: True, with_skip_route=True))

    exported = source.export_configs()
    assert exported["guarded"]["nodes"]["A"]["transitions"] == [{"action": "next", "target": "B"}]

    target = FlowConfigManager(registry)
    imported = target.import_configs(exported)

    assert sorted(imported) == ["guarded", "two-step"]
    assert target.get_config("guarded").nodes["A"].transitions[0].guard is None
    assert target.get_config("two-step").to_dict() == source.get_config("two-step").to_dict()


def test_import_skips_invalid_entries(configs, caplog):
    data = {
        "two-step": two_step_config(),
        "broken": {"name": "broken", "start_node": "missing", "nodes": {}},
    }

    with caplog.at_level(logging.ERROR, logger="pydealflow.registry.flows"):
        imported = configs.import_configs(data)

    assert imported == ["two-step"]
    assert "Failed to import config 'broken'" in caplog.text


def test_unregister_and_clear(configs):
    configs.register_config(two_step_config())

    assert configs.unregister_config("two-step")
    assert not configs.unregister_config("two-step")

    configs.register_config(two_step_config())
    configs.clear()
    assert configs.list_configs() == []
