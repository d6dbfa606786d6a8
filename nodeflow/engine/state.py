"""
Node state store.

Holds the run-scoped ``output`` / ``error`` / ``is_executing`` record of every
node in one workflow. The execution engine is the only writer; observers
(WebSocket subscribers, tests) are notified after every write. All writes go
through a single lock so concurrent branches writing to the same fan-in
target stay consistent.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from .models import NodeState, NodeStatus

logger = logging.getLogger(__name__)


class NodeStateEvent(BaseModel):
    workflow_id: str
    node_id: str
    state: NodeState


StateObserver = Callable[[NodeStateEvent], None]


class NodeStateStore:
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        self._states: Dict[str, NodeState] = {}
        self._observers: List[StateObserver] = []
        self._lock = threading.RLock()

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def get(self, node_id: str) -> NodeState:
        with self._lock:
            state = self._states.get(node_id)
            return state.model_copy() if state else NodeState()

    def snapshot(self) -> Dict[str, NodeState]:
        with self._lock:
            return {node_id: state.model_copy() for node_id, state in self._states.items()}

    def reset(self, node_ids: Iterable[str]) -> None:
        """Clear output, error and executing flag of every given node."""
        for node_id in node_ids:
            self._write(node_id, NodeState())

    def mark_executing(self, node_id: str) -> None:
        current = self.get(node_id)
        self._write(
            node_id,
            NodeState(output=current.output, error=None, is_executing=True, status=NodeStatus.RUNNING),
        )

    def record_output(self, node_id: str, output: Any) -> None:
        self._write(node_id, NodeState(output=output, status=NodeStatus.COMPLETED))

    def record_error(self, node_id: str, error: str) -> None:
        current = self.get(node_id)
        self._write(
            node_id,
            NodeState(output=current.output, error=error, status=NodeStatus.FAILED),
        )

    def discard(self, node_id: str) -> None:
        with self._lock:
            self._states.pop(node_id, None)

    def _write(self, node_id: str, state: NodeState) -> None:
        with self._lock:
            self._states[node_id] = state
            observers = list(self._observers)

        event = NodeStateEvent(workflow_id=self.workflow_id, node_id=node_id, state=state.model_copy())
        for observer in observers:
            try:
                observer(event)
            except Exception:
                logger.exception(f"State observer failed for node {node_id}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, node_id: Optional[str]) -> bool:
        with self._lock:
            return node_id in self._states
