"""
Pytest configuration and fixtures for pydealflow tests.

Provides a fresh runtime per test, reusable test nodes and small async
helpers.
"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest

from pydealflow import FlowConfig, FlowNodeConfig, Node, Runtime

# Sample test nodes for reuse across tests


class EchoNode(Node):
    """Appends its name to shared["visited"] and returns params["action"]."""

    def finalize(self, shared, prep_res, exec_res):
        shared.setdefault("visited", []).append(self.name)
        return self.params.get("action")


class CountingNode(Node):
    """Fails its first `failures` execute attempts, then returns "ok".

    Attempts are recorded in `calls`, which is shared by the template and
    all of its clones.
    """

    def __init__(self, failures: int = 0, calls: list[int] | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.failures = failures
        self.calls = calls if calls is not None else []

    async def execute(self, prep_res):
        self.calls.append(len(self.calls) + 1)
        if len(self.calls) <= self.failures:
            raise RuntimeError(f"attempt {len(self.calls)} failed")
        return "ok"

    def finalize(self, shared, prep_res, exec_res):
        shared["result"] = exec_res
        return None


class FailingNode(Node):
    """Always raises from execute."""

    async def execute(self, prep_res):
        raise RuntimeError(f"{self.name} exploded")


class SleepNode(Node):
    """Sleeps in execute; marks shared["slept"] only if it finishes."""

    def __init__(self, seconds: float, **kwargs: Any):
        super().__init__(**kwargs)
        self.seconds = seconds

    async def execute(self, prep_res):
        await asyncio.sleep(self.seconds)
        return self.seconds

    def finalize(self, shared, prep_res, exec_res):
        shared["slept"] = True
        return None


class BlockingNode(Node):
    """Blocks in execute until `gate` is set.

    `tracker` counts instances currently inside execute and the peak of
    that count across the test.
    """

    def __init__(self, gate: asyncio.Event, tracker: dict[str, int], **kwargs: Any):
        super().__init__(**kwargs)
        self.gate = gate
        self.tracker = tracker

    async def execute(self, prep_res):
        self.tracker["running"] += 1
        self.tracker["peak"] = max(self.tracker["peak"], self.tracker["running"])
        try:
            await self.gate.wait()
        finally:
            self.tracker["running"] -= 1
        return None

    def finalize(self, shared, prep_res, exec_res):
        shared["released"] = True
        return None


def new_tracker() -> dict[str, int]:
    return {"running": 0, "peak": 0}


def single_node_config(name: str, agent: str) -> FlowConfig:
    """One-node flow configuration running `agent`."""
    return FlowConfig(name=name, start_node="main", nodes={"main": FlowNodeConfig(agent=agent)})


def two_step_config(agent: str = "echo") -> dict[str, Any]:
    """A --next--> B, both backed by the same agent."""
    return {
        "name": "two-step",
        "start_node": "A",
        "nodes": {
            "A": {
                "agent": agent,
                "params": {"action": "next"},
                "transitions": [{"action": "next", "target": "B"}],
            },
            "B": {"agent": agent, "transitions": []},
        },
    }


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until `predicate()` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
async def runtime() -> AsyncGenerator[Runtime, None]:
    """Fresh registry, config store, logger and scheduler per test."""
    rt = Runtime.create()
    yield rt
    await rt.scheduler.shutdown(cancel_running=True)


@pytest.fixture
def echo_runtime(runtime: Runtime) -> Runtime:
    """Runtime with the "echo" agent and the two-step flow registered."""
    runtime.registry.register("echo", EchoNode())
    runtime.configs.register_config(two_step_config())
    return runtime
