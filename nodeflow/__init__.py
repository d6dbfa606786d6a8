"""
nodeflow

Executes visually assembled workflow graphs of trigger, AI, action and logic
nodes.
"""

__version__ = "1.0.0"

from .engine.engine import WorkflowEngine
from .engine.dispatcher import NodeDispatcher
from .engine.models import WorkflowGraph, NodeRecord, Edge, WorkflowRun
from .nodes import build_default_registry

__all__ = [
    "WorkflowEngine",
    "NodeDispatcher",
    "WorkflowGraph",
    "NodeRecord",
    "Edge",
    "WorkflowRun",
    "build_default_registry",
]
