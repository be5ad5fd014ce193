"""
Units of work: the prepare → execute → finalize node contract.

A node reads what it needs from the shared state in `prepare`, does its
(possibly slow, possibly failing) work in `execute`, and writes results
back and picks the outgoing edge in `finalize`. Only `execute` suspends
and only `execute` is retried.

Nodes are templates. Every run works on a clone (see BaseNode.clone), so
per-run attributes set on `self` never leak between runs.

Example:
    ```python
    class Quote(Node):
        def prepare(self, shared):
            return shared["product"]

        async def execute(self, product):
            return await pricing_client.quote(product)

        async def fallback(self, product, error):
            return None

        def finalize(self, shared, product, price):
            shared["price"] = price
            return "validate" if price is not None else "manual-review"

    quote = Quote(max_retries=3, wait=0.5)
    ```
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from pydealflow.core.context import get_current_observer
from pydealflow.models.retry import RetryableError, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "default"
"""Action used when finalize returns None or an empty label."""

SKIP_ACTION = "skip"
"""Action emitted by a guarded edge whose guard rejected the shared state."""


class BaseNode:
    """Minimal unit of work with labelled successors and a parameter bag."""

    def __init__(self, name: str | None = None):
        self.name = name or type(self).__name__
        self.params: dict[str, Any] = {}
        self.successors: dict[str, BaseNode] = {}

    # -------------------------------------------------------------------------
    # Phases (override in subclasses)
    # -------------------------------------------------------------------------

    def prepare(self, shared: Any) -> Any:
        """Read inputs from the shared state. Synchronous, never retried."""
        return None

    async def execute(self, prep_res: Any) -> Any:
        """Do the work. May suspend; retried by Node according to its policy."""
        return None

    def finalize(self, shared: Any, prep_res: Any, exec_res: Any) -> str | None:
        """Write results to the shared state and return the action label."""
        return None

    async def ping(self) -> bool:
        """Liveness probe used by registry health checks."""
        return True

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _execute(self, prep_res: Any) -> Any:
        return await self.execute(prep_res)

    async def _run(self, shared: Any) -> str | None:
        prep_res = self.prepare(shared)
        exec_res = await self._execute(prep_res)
        return self.finalize(shared, prep_res, exec_res)

    async def run(self, shared: Any) -> str | None:
        """Run this node alone. Successors are not followed; use a Flow for that."""
        if self.successors:
            logger.warning(f"Node '{self.name}' won't run its successors. Use a Flow.")
        return await self._run(shared)

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def set_params(self, params: dict[str, Any]) -> BaseNode:
        self.params = dict(params)
        return self

    def next(self, node: BaseNode) -> BaseNode:
        """Wire `node` as the default successor and return it for chaining."""
        self.on(DEFAULT_ACTION, node)
        return node

    def on(self, action: str, node: BaseNode) -> BaseNode:
        """Wire `node` as the successor for `action`."""
        if action in self.successors:
            logger.warning(f"Overwriting successor for action '{action}' on '{self.name}'")
        self.successors[action] = node
        return self

    def get_next_node(self, action: str | None = None) -> BaseNode | None:
        """Successor for `action`, or None when the flow should end here."""
        action = action or DEFAULT_ACTION
        nxt = self.successors.get(action)
        if nxt is None and self.successors:
            logger.warning(
                f"Flow ends at '{self.name}': '{action}' not found in {list(self.successors)}"
            )
        return nxt

    def clone(self) -> BaseNode:
        """Copy for a single run.

        The copy shares successor *targets* with the template but owns its
        own params and successor map, and any attribute a run sets on it.
        """
        cloned = copy.copy(self)
        cloned.params = dict(self.params)
        cloned.successors = dict(self.successors)
        return cloned

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, successors={list(self.successors)})"


class Node(BaseNode):
    """BaseNode with retry, fallback and an optional per-attempt timeout.

    Args:
        max_retries: Total number of execute attempts (1 = no retry)
        wait: Seconds to wait between attempts
        retry_policy: Full RetryPolicy; overrides max_retries/wait
        timeout: Seconds allowed per attempt; a timed-out attempt counts as a failure
        name: Node name used in events (defaults to the class name)
    """

    def __init__(
        self,
        max_retries: int = 1,
        wait: float = 0,
        *,
        retry_policy: RetryPolicy | None = None,
        timeout: float | None = None,
        name: str | None = None,
    ):
        super().__init__(name)
        if retry_policy is None:
            if max_retries == 1 and not wait:
                retry_policy = RetryPolicy.NONE
            else:
                retry_policy = RetryPolicy.fixed(max_retries, int(wait * 1000))
        self.retry_policy = retry_policy
        self.timeout = timeout
        self.current_retry = 0

    @property
    def max_retries(self) -> int:
        return self.retry_policy.max_attempts

    async def fallback(self, prep_res: Any, error: Exception) -> Any:
        """Called once after the final failed attempt. Re-raises by default."""
        raise error

    async def _attempt(self, prep_res: Any) -> Any:
        if self.timeout is None:
            return await self.execute(prep_res)
        return await asyncio.wait_for(self.execute(prep_res), self.timeout)

    async def _execute(self, prep_res: Any) -> Any:
        policy = self.retry_policy
        attempt = 1

        while True:
            self.current_retry = attempt - 1
            try:
                return await self._attempt(prep_res)
            except Exception as e:
                if isinstance(e, RetryableError) and not e.is_retryable():
                    delay_ms = None
                else:
                    delay_ms = policy.delay_for_attempt(attempt)

                if delay_ms is None:
                    logger.debug(f"Node '{self.name}' failed after {attempt} attempt(s): {e}")
                    return await self.fallback(prep_res, e)

                attempt += 1
                observer = get_current_observer()
                if observer is not None:
                    observer.on_node_retry(self.name, attempt, policy.max_attempts, e)
                logger.debug(
                    f"Node '{self.name}' attempt {attempt - 1} failed ({e}), "
                    f"retrying in {delay_ms}ms"
                )
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000)


class BatchNode(Node):
    """Node whose prepare returns a list; execute runs once per item, in order."""

    async def _execute(self, items: Any) -> list[Any]:
        if not items:
            return []
        results = []
        for item in items:
            results.append(await super()._execute(item))
        return results


class ParallelBatchNode(Node):
    """Node whose prepare returns a list; items execute concurrently."""

    async def _execute(self, items: Any) -> list[Any]:
        if not items:
            return []
        run_item = super()._execute
        return list(await asyncio.gather(*(run_item(item) for item in items)))
