"""
Flows: graphs of nodes traversed by action label.

A Flow is itself a node, so flows nest. Running a flow clones its start
node, runs it, looks up the returned action among that node's successors,
clones the successor and repeats until no successor matches. The last
action becomes the flow's own result (the default finalize returns it).

Steps of one traversal never overlap: each step's action decides the next
step. The shared state is passed by reference to every step.

Example:
    ```python
    collect = CollectCustomer()
    price = Quote(max_retries=3)
    collect.on("pricing", price)
    collect.on("collection", collect)  # ask again

    flow = Flow(start=collect)
    state = {"message": "20k gallons diesel to Tulsa"}
    await flow.run(state)
    ```
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydealflow.core.node import BaseNode

logger = logging.getLogger(__name__)


class Flow(BaseNode):
    """Traverses a node graph starting from `start`."""

    def __init__(self, start: BaseNode | None = None, name: str | None = None):
        super().__init__(name)
        self.start_node = start

    def start(self, node: BaseNode) -> BaseNode:
        """Set the entry node and return it for chaining."""
        self.start_node = node
        return node

    def _enter(self, node: BaseNode, params: dict[str, Any]) -> BaseNode:
        """Clone `node` for one step and merge the run parameters over its own."""
        current = node.clone()
        current.set_params({**current.params, **params})
        return current

    async def _step(self, node: BaseNode, shared: Any) -> str | None:
        return await node._run(shared)

    def _advance(self, node: BaseNode, action: str | None) -> BaseNode | None:
        return node.get_next_node(action)

    async def _orchestrate(self, shared: Any, params: dict[str, Any] | None = None) -> str | None:
        if self.start_node is None:
            raise ValueError(f"Flow '{self.name}' has no start node")

        run_params = self.params if params is None else params
        current: BaseNode | None = self._enter(self.start_node, run_params)
        last_action: str | None = None

        while current is not None:
            last_action = await self._step(current, shared)
            nxt = self._advance(current, last_action)
            current = self._enter(nxt, run_params) if nxt is not None else None

        return last_action

    async def _run(self, shared: Any) -> str | None:
        prep_res = self.prepare(shared)
        last_action = await self._orchestrate(shared)
        return self.finalize(shared, prep_res, last_action)

    def finalize(self, shared: Any, prep_res: Any, exec_res: Any) -> str | None:
        return exec_res

    async def execute(self, prep_res: Any) -> Any:
        raise RuntimeError("Flow can't execute; run() traverses its graph instead")


class BatchFlow(Flow):
    """Flow whose prepare returns a list of parameter dicts.

    The graph is traversed once per dict, strictly in order. The first
    failing traversal aborts the batch.
    """

    def prepare(self, shared: Any) -> list[dict[str, Any]]:
        return []

    async def _run(self, shared: Any) -> str | None:
        batch_params = self.prepare(shared) or []
        for bp in batch_params:
            await self._orchestrate(shared, {**self.params, **bp})
        return self.finalize(shared, batch_params, None)


class ParallelBatchFlow(BatchFlow):
    """BatchFlow whose traversals all start at once (fan-out/fan-in).

    Traversals interleave at their suspension points and share the same
    shared-state object.
    """

    async def _run(self, shared: Any) -> str | None:
        batch_params = self.prepare(shared) or []
        await asyncio.gather(
            *(self._orchestrate(shared, {**self.params, **bp}) for bp in batch_params)
        )
        return self.finalize(shared, batch_params, None)
