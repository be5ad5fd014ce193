"""
Core execution engine for pydealflow.

This module contains the fundamental types used throughout pydealflow:
- BaseNode / Node: the prepare → execute → finalize unit of work
- BatchNode / ParallelBatchNode: per-item execute over a prepared list
- Flow / BatchFlow / ParallelBatchFlow: graph traversal by action label
- RUN_OBSERVER: task-local observer of the run executing in this task
"""

from pydealflow.core.context import RUN_OBSERVER, RunObserver, get_current_observer
from pydealflow.core.flow import BatchFlow, Flow, ParallelBatchFlow
from pydealflow.core.node import (
    DEFAULT_ACTION,
    SKIP_ACTION,
    BaseNode,
    BatchNode,
    Node,
    ParallelBatchNode,
)

__all__ = [
    "BaseNode",
    "Node",
    "BatchNode",
    "ParallelBatchNode",
    "Flow",
    "BatchFlow",
    "ParallelBatchFlow",
    "DEFAULT_ACTION",
    "SKIP_ACTION",
    "RUN_OBSERVER",
    "RunObserver",
    "get_current_observer",
]
