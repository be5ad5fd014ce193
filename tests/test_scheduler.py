"""
Tests for WorkflowScheduler: results, priority ordering, the concurrency
ceiling, timeouts, cancellation and precondition checks.
"""

import asyncio
import time

import pytest
from conftest import (
    BlockingNode,
    EchoNode,
    FailingNode,
    SleepNode,
    new_tracker,
    single_node_config,
    wait_until,
)

from pydealflow import (
    AgentUnavailableError,
    ExecutionOptions,
    FlowNotFoundError,
    Node,
    RunStatus,
    WorkflowCancelledError,
    WorkflowScheduler,
    WorkflowTimeoutError,
)


def register_flow(runtime, name, template):
    """Register `template` as agent `name` and a one-node flow of the same name."""
    runtime.registry.register(name, template)
    runtime.configs.register_config(single_node_config(name, name))


def register_blocking(runtime, name="blocking"):
    gate = asyncio.Event()
    tracker = new_tracker()
    register_flow(runtime, name, BlockingNode(gate, tracker))
    return gate, tracker


# ==============================================================================
# Results
# ==============================================================================


@pytest.mark.asyncio
async def test_two_step_flow_runs_exactly_two_steps(echo_runtime):
    state = {}
    result = await echo_runtime.scheduler.execute("two-step", state)

    assert result.success
    assert result.errors == []
    assert result.steps_executed == 2
    assert result.final_state is state
    assert state["visited"] == ["A", "B"]
    assert result.metrics.nodes_executed == 2
    assert result.metrics.transitions == 1
    assert result.metrics.end_time >= result.metrics.start_time
    assert result.duration_ms >= 0
    assert echo_runtime.flow_logger.get_context(result.run_id).succeeded is True


@pytest.mark.asyncio
async def test_request_id_is_the_run_id(echo_runtime):
    scheduler = echo_runtime.scheduler

    request = scheduler.submit("two-step", {})
    result = await request

    assert result.run_id == request.id
    assert scheduler.status(request.id) == RunStatus.SUCCEEDED
    assert scheduler.status("unknown") is None


@pytest.mark.asyncio
async def test_global_params_reach_every_node(runtime):
    seen = []

    class Reads(Node):
        def prepare(self, shared):
            seen.append(self.params.get("region"))

    register_flow(runtime, "reads", Reads())
    await runtime.scheduler.execute("reads", {}, ExecutionOptions(global_params={"region": "eu"}))

    assert seen == ["eu"]


@pytest.mark.asyncio
async def test_concurrent_runs_keep_separate_state(echo_runtime):
    states = [{"customer": n} for n in range(5)]

    results = await asyncio.gather(*(echo_runtime.scheduler.execute("two-step", s) for s in states))

    for n, (state, result) in enumerate(zip(states, results)):
        assert result.final_state is state
        assert state == {"customer": n, "visited": ["A", "B"]}


@pytest.mark.asyncio
async def test_unknown_flow(runtime):
    with pytest.raises(FlowNotFoundError):
        await runtime.scheduler.execute("missing", {})


# ==============================================================================
# Errors and continue_on_error
# ==============================================================================


@pytest.mark.asyncio
async def test_step_failure_propagates_by_default(runtime):
    register_flow(runtime, "failing", FailingNode())

    request = runtime.scheduler.submit("failing", {})
    with pytest.raises(RuntimeError, match="exploded"):
        await request

    assert runtime.scheduler.status(request.id) == RunStatus.FAILED


@pytest.mark.asyncio
async def test_step_failure_captured_with_continue_on_error(runtime):
    register_flow(runtime, "failing", FailingNode())

    result = await runtime.scheduler.execute("failing", {}, ExecutionOptions(continue_on_error=True))

    assert not result.success
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], RuntimeError)
    assert result.steps_executed == 1


@pytest.mark.asyncio
async def test_precondition_failure_for_disabled_agent(echo_runtime):
    echo_runtime.registry.set_enabled("echo", False)

    with pytest.raises(AgentUnavailableError) as exc_info:
        await echo_runtime.scheduler.execute(
            "two-step", {}, ExecutionOptions(continue_on_error=True)
        )

    assert exc_info.value.agents == ["echo"]
    assert exc_info.value.run_id


@pytest.mark.asyncio
async def test_precondition_failure_for_unhealthy_agent(runtime):
    class Offline(EchoNode):
        async def ping(self) -> bool:
            return False

    register_flow(runtime, "offline", Offline())
    state = {}

    with pytest.raises(AgentUnavailableError):
        await runtime.scheduler.execute("offline", state)

    assert state == {}
    assert runtime.flow_logger.summary()["total_runs"] == 0


# ==============================================================================
# Timeouts
# ==============================================================================


@pytest.mark.asyncio
async def test_timeout_raises_instead_of_hanging(runtime):
    register_flow(runtime, "slow", SleepNode(10))
    state = {}

    started = time.perf_counter()
    with pytest.raises(WorkflowTimeoutError) as exc_info:
        await runtime.scheduler.execute("slow", state, ExecutionOptions(timeout_ms=50))

    assert time.perf_counter() - started < 2
    assert exc_info.value.timeout_ms == 50
    assert exc_info.value.run_id in str(exc_info.value)
    assert "slept" not in state


@pytest.mark.asyncio
async def test_timeout_captured_with_continue_on_error(runtime):
    register_flow(runtime, "slow", SleepNode(10))

    result = await runtime.scheduler.execute(
        "slow", {}, ExecutionOptions(timeout_ms=50, continue_on_error=True)
    )

    assert not result.success
    assert isinstance(result.errors[0], WorkflowTimeoutError)
    assert runtime.flow_logger.get_context(result.run_id).succeeded is False


@pytest.mark.asyncio
async def test_node_timeout_is_not_reported_as_workflow_timeout(runtime):
    register_flow(runtime, "node-timeout", SleepNode(10, timeout=0.01))

    with pytest.raises(TimeoutError) as exc_info:
        await runtime.scheduler.execute("node-timeout", {}, ExecutionOptions(timeout_ms=5_000))

    assert not isinstance(exc_info.value, WorkflowTimeoutError)


@pytest.mark.asyncio
async def test_fast_run_within_timeout_succeeds(echo_runtime):
    result = await echo_runtime.scheduler.execute("two-step", {}, ExecutionOptions(timeout_ms=5_000))
    assert result.success


# ==============================================================================
# Priority and concurrency
# ==============================================================================


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_higher_priority_starts_first_and_ties_keep_submission_order(echo_runtime):
    scheduler = echo_runtime.scheduler.with_max_concurrent(1)

    requests = [
        scheduler.submit("two-step", {}, ExecutionOptions(priority=p)) for p in (1, 5, 3, 5)
    ]
    await asyncio.gather(*requests)

    by_id = {r.id: r for r in requests}
    started = [by_id[request_id] for request_id in scheduler.start_order]

    assert [r.priority for r in started] == [5, 5, 3, 1]
    assert started[0] is requests[1]
    assert started[1] is requests[3]


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_concurrency_ceiling_is_never_exceeded(runtime):
    gate, tracker = register_blocking(runtime)
    scheduler = runtime.scheduler.with_max_concurrent(2)

    requests = [scheduler.submit("blocking", {}) for _ in range(5)]

    await wait_until(lambda: tracker["running"] == 2)
    await asyncio.sleep(0.05)

    assert tracker["peak"] == 2
    status = scheduler.queue_status()
    assert status["active"] == 2
    assert status["queued"] == 3
    assert status["is_processing"]

    gate.set()
    results = await asyncio.gather(*requests)

    assert all(r.success for r in results)
    assert tracker["peak"] == 2


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_raising_the_ceiling_lets_more_runs_start(runtime):
    gate, tracker = register_blocking(runtime)
    scheduler = runtime.scheduler.with_max_concurrent(1)
    register_flow(runtime, "quick", EchoNode())

    blocked = [scheduler.submit("blocking", {}) for _ in range(3)]
    await wait_until(lambda: tracker["running"] == 1)

    scheduler.set_max_concurrent(4)
    await scheduler.execute("quick", {})
    assert tracker["running"] == 3
    assert scheduler.queue_status()["max_concurrent"] == 4

    gate.set()
    await asyncio.gather(*blocked)


def test_ceiling_must_be_positive(runtime):
    with pytest.raises(ValueError):
        runtime.scheduler.set_max_concurrent(0)
    with pytest.raises(ValueError):
        WorkflowScheduler(runtime.registry, runtime.configs, max_concurrent=0)


# ==============================================================================
# Queue management
# ==============================================================================


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_cancel_queued_request(runtime):
    gate, tracker = register_blocking(runtime)
    scheduler = runtime.scheduler.with_max_concurrent(1)

    running = scheduler.submit("blocking", {})
    waiting = scheduler.submit("blocking", {})
    await wait_until(lambda: tracker["running"] == 1)

    assert scheduler.cancel_queued(waiting.id)
    assert not scheduler.cancel_queued(waiting.id)
    assert not scheduler.cancel_queued(running.id)

    with pytest.raises(WorkflowCancelledError) as exc_info:
        await waiting
    assert exc_info.value.run_id == waiting.id
    assert scheduler.status(waiting.id) == RunStatus.CANCELLED

    gate.set()
    assert (await running).success
    assert waiting.id not in scheduler.start_order


@pytest.mark.concurrency
@pytest.mark.asyncio
async def test_clear_queue_rejects_all_pending(runtime):
    gate, tracker = register_blocking(runtime)
    scheduler = runtime.scheduler.with_max_concurrent(1)

    running = scheduler.submit("blocking", {})
    pending = [scheduler.submit("blocking", {}, ExecutionOptions(priority=p)) for p in (1, 7, 3)]
    await wait_until(lambda: tracker["running"] == 1)

    assert scheduler.queue_status()["next_priority"] == 7
    assert scheduler.clear_queue() == 3
    assert scheduler.queue_status()["queued"] == 0

    for request in pending:
        with pytest.raises(WorkflowCancelledError):
            await request

    gate.set()
    assert (await running).success


@pytest.mark.asyncio
async def test_queue_status_when_idle(runtime):
    assert runtime.scheduler.queue_status() == {
        "queued": 0,
        "active": 0,
        "max_concurrent": 3,
        "is_processing": False,
        "next_priority": None,
    }


@pytest.mark.asyncio
async def test_shutdown_rejects_pending_and_waits_for_running(runtime):
    gate, tracker = register_blocking(runtime)
    scheduler = runtime.scheduler.with_max_concurrent(1)

    running = scheduler.submit("blocking", {})
    pending = scheduler.submit("blocking", {})
    await wait_until(lambda: tracker["running"] == 1)

    asyncio.get_running_loop().call_later(0.02, gate.set)
    await scheduler.shutdown()

    assert running.done()
    assert (await running).success
    with pytest.raises(WorkflowCancelledError):
        await pending


@pytest.mark.asyncio
async def test_execute_direct_bypasses_queue(echo_runtime):
    scheduler = echo_runtime.scheduler

    result = await scheduler.execute_direct("two-step", {})

    assert result.success
    assert scheduler.start_order == []


@pytest.mark.asyncio
async def test_execution_summary(echo_runtime):
    await echo_runtime.scheduler.execute("two-step", {})
    await echo_runtime.scheduler.execute("two-step", {})

    summary = echo_runtime.scheduler.execution_summary()
    assert summary["total_runs"] == 2
    assert summary["success_rate"] == 100.0


@pytest.mark.asyncio
async def test_history_keeps_only_the_most_recent_runs(echo_runtime, monkeypatch):
    monkeypatch.setattr("pydealflow.executor.scheduler.HISTORY_SIZE", 5)
    scheduler = WorkflowScheduler(echo_runtime.registry, echo_runtime.configs)

    requests = [scheduler.submit("two-step", {}) for _ in range(8)]
    await asyncio.gather(*requests)
    await scheduler.shutdown()

    assert scheduler.start_order == [r.id for r in requests[-5:]]
    assert scheduler.status(requests[0].id) is None
    assert scheduler.status(requests[-1].id) == RunStatus.SUCCEEDED


# ==============================================================================
# Configuration
# ==============================================================================


@pytest.mark.asyncio
async def test_from_env(runtime, monkeypatch):
    monkeypatch.setenv("PYDEALFLOW_MAX_CONCURRENT", "7")
    monkeypatch.setenv("PYDEALFLOW_POLL_INTERVAL", "0.001")
    monkeypatch.setenv("PYDEALFLOW_DEFAULT_TIMEOUT_MS", "50")
    register_flow(runtime, "slow", SleepNode(10))

    scheduler = runtime.scheduler.from_env()

    assert scheduler.max_concurrent == 7
    with pytest.raises(WorkflowTimeoutError):
        await scheduler.execute("slow", {})


@pytest.mark.asyncio
async def test_request_timeout_overrides_default(runtime):
    register_flow(runtime, "nap", SleepNode(0.05))
    scheduler = runtime.scheduler.with_default_timeout(10)

    result = await scheduler.execute("nap", {}, ExecutionOptions(timeout_ms=5_000))
    assert result.success
