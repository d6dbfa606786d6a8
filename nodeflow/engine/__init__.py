"""
Core workflow engine components

This module contains the graph execution engine, its data model, the node
state store, the dispatcher and template interpolation.
"""

from .engine import WorkflowEngine, trigger_nodes, check_integrity
from .dispatcher import NodeDispatcher
from .state import NodeStateStore, NodeStateEvent
from .templates import interpolate, interpolate_fields
from .models import (
    WorkflowGraph,
    NodeRecord,
    Edge,
    NodeState,
    NodeStatus,
    RunStatus,
    WorkflowRun,
    ExecutionLog,
    FanInPolicy,
    ExecutionMode,
)

__all__ = [
    "WorkflowEngine",
    "NodeDispatcher",
    "NodeStateStore",
    "NodeStateEvent",
    "WorkflowGraph",
    "NodeRecord",
    "Edge",
    "NodeState",
    "NodeStatus",
    "RunStatus",
    "WorkflowRun",
    "ExecutionLog",
    "FanInPolicy",
    "ExecutionMode",
    "trigger_nodes",
    "check_integrity",
    "interpolate",
    "interpolate_fields",
]
