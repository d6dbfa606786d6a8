from typing import Dict, Any, List, Optional, Set, Tuple
from collections import deque
import asyncio
import logging
import json

from .dispatcher import NodeDispatcher
from .models import (
    WorkflowGraph, WorkflowRun, NodeRecord, Edge, NodeView, NodeStatus, RunStatus,
    ExecutionLog, RunContext, NodeExecutionResult, NodeType, FanInPolicy,
    ExecutionMode, utc_now
)
from .state import NodeStateStore, NodeStateEvent
from nodeflow.errors import GraphIntegrityError, WorkflowBusyError, WorkflowNotFoundError

logger = logging.getLogger(__name__)

MAX_STORED_RUNS = 500

EMPTY_WORKFLOW_MESSAGE = "Add some nodes to the canvas first!"
NO_TRIGGER_MESSAGE = "Add a trigger node to start the workflow!"

# (target node id, input for the target, id of the node that produced it)
WorkItem = Tuple[str, Any, Optional[str]]


def trigger_nodes(graph: WorkflowGraph) -> List[NodeRecord]:
    """Nodes with no incoming edges, in canvas order."""
    targets = {edge.target for edge in graph.edges}
    return [node for node in graph.nodes if node.id not in targets]


def check_integrity(graph: WorkflowGraph) -> None:
    """
    Validate structural integrity: unique node ids, unique edge ids and
    every edge endpoint resolving to a node. Cycles are allowed.
    """
    seen: Set[str] = set()
    for node in graph.nodes:
        if node.id in seen:
            raise GraphIntegrityError(f"Duplicate node id: {node.id}")
        seen.add(node.id)

    edge_ids: Set[str] = set()
    for edge in graph.edges:
        if edge.id in edge_ids:
            raise GraphIntegrityError(f"Duplicate edge id: {edge.id}")
        edge_ids.add(edge.id)
        for endpoint in (edge.source, edge.target):
            if endpoint not in seen:
                raise GraphIntegrityError(f"Edge {edge.id} references unknown node {endpoint}")


class WorkflowEngine:
    """Holds workflow graphs, their node state and executes them"""

    def __init__(self, dispatcher: NodeDispatcher, max_runs: int = MAX_STORED_RUNS):
        self.dispatcher = dispatcher
        self.max_runs = max_runs
        self.workflows: Dict[str, WorkflowGraph] = {}
        self.state_stores: Dict[str, NodeStateStore] = {}
        self.runs: Dict[str, WorkflowRun] = {}
        self.websocket_connections: Dict[str, List] = {}  # workflow id -> sockets
        self._locks: Dict[str, asyncio.Lock] = {}
        self._background_tasks: Set[asyncio.Task] = set()

    # Workflow registry

    def create_workflow(self, graph: WorkflowGraph) -> str:
        check_integrity(graph)
        self.workflows[graph.id] = graph
        store = NodeStateStore(graph.id)
        store.subscribe(self._on_state_event)
        self.state_stores[graph.id] = store
        return graph.id

    def get_workflow(self, workflow_id: str) -> WorkflowGraph:
        graph = self.workflows.get(workflow_id)
        if graph is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        return graph

    def get_state_store(self, workflow_id: str) -> NodeStateStore:
        self.get_workflow(workflow_id)
        return self.state_stores[workflow_id]

    def node_views(self, workflow_id: str) -> List[NodeView]:
        """Nodes of a workflow merged with their run-scoped state."""
        graph = self.get_workflow(workflow_id)
        store = self.state_stores[workflow_id]
        return [
            NodeView(**node.model_dump(), **store.get(node.id).model_dump())
            for node in graph.nodes
        ]

    def add_node(self, workflow_id: str, node: NodeRecord) -> NodeRecord:
        graph = self._editable(workflow_id)
        if graph.get_node(node.id) is not None:
            raise GraphIntegrityError(f"Duplicate node id: {node.id}")
        graph.nodes.append(node)
        return node

    def update_node(self, workflow_id: str, node_id: str, label: str = None,
                    config: Dict[str, Any] = None) -> NodeRecord:
        """Replace a node's label and/or config; config keys are merged."""
        graph = self._editable(workflow_id)
        node = graph.get_node(node_id)
        if node is None:
            raise GraphIntegrityError(f"Unknown node {node_id}")
        if label is not None:
            node.label = label
        if config is not None:
            node.config = {**node.config, **config}
        return node

    def delete_node(self, workflow_id: str, node_id: str) -> None:
        """Remove a node together with every edge that references it."""
        graph = self._editable(workflow_id)
        if graph.get_node(node_id) is None:
            raise GraphIntegrityError(f"Unknown node {node_id}")
        graph.nodes = [n for n in graph.nodes if n.id != node_id]
        graph.edges = [e for e in graph.edges if e.source != node_id and e.target != node_id]
        self.state_stores[workflow_id].discard(node_id)

    def add_edge(self, workflow_id: str, edge: Edge) -> Edge:
        graph = self._editable(workflow_id)
        for endpoint in (edge.source, edge.target):
            if graph.get_node(endpoint) is None:
                raise GraphIntegrityError(f"Edge {edge.id} references unknown node {endpoint}")
        for existing in graph.edges:
            if existing.id == edge.id:
                raise GraphIntegrityError(f"Duplicate edge id: {edge.id}")
            if (existing.source, existing.target, existing.source_handle, existing.target_handle) == (
                edge.source, edge.target, edge.source_handle, edge.target_handle
            ):
                raise GraphIntegrityError(f"Nodes {edge.source} and {edge.target} are already connected")
        graph.edges.append(edge)
        return edge

    def delete_edge(self, workflow_id: str, edge_id: str) -> None:
        graph = self._editable(workflow_id)
        if not any(e.id == edge_id for e in graph.edges):
            raise GraphIntegrityError(f"Unknown edge {edge_id}")
        graph.edges = [e for e in graph.edges if e.id != edge_id]

    def clear_workflow(self, workflow_id: str) -> None:
        graph = self._editable(workflow_id)
        for node in graph.nodes:
            self.state_stores[workflow_id].discard(node.id)
        graph.nodes = []
        graph.edges = []

    def is_running(self, workflow_id: str) -> bool:
        lock = self._locks.get(workflow_id)
        return lock is not None and lock.locked()

    def _editable(self, workflow_id: str) -> WorkflowGraph:
        graph = self.get_workflow(workflow_id)
        if self.is_running(workflow_id):
            raise WorkflowBusyError(f"Workflow {workflow_id} is running")
        return graph

    # Execution

    async def run_workflow(
        self,
        workflow_id: str,
        fan_in: FanInPolicy = FanInPolicy.FIRST_ARRIVAL,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
        branch_filtering: bool = False,
    ) -> WorkflowRun:
        """
        Execute a workflow from its trigger nodes.

        Node failures never fail the run; they are recorded on the node and
        stop propagation past it. A workflow with no nodes or no trigger is
        refused without touching any node state.
        """
        graph = self.get_workflow(workflow_id)
        run = WorkflowRun.create(workflow_id, fan_in=fan_in, mode=mode, branch_filtering=branch_filtering)
        self._store_run(run)

        lock = self._locks.setdefault(workflow_id, asyncio.Lock())
        async with lock:
            if not graph.nodes:
                return self._refuse(run, EMPTY_WORKFLOW_MESSAGE)
            triggers = trigger_nodes(graph)
            if not triggers:
                return self._refuse(run, NO_TRIGGER_MESSAGE)

            store = self.state_stores[workflow_id]
            snapshot = graph.model_copy(deep=True)

            run.status = RunStatus.RUNNING
            self._publish_run(run)
            store.reset(node.id for node in snapshot.nodes)

            context = RunContext()
            initial: List[WorkItem] = [(node.id, None, None) for node in triggers]
            try:
                if mode == ExecutionMode.CONCURRENT:
                    await self._run_concurrent(run, snapshot, store, context, initial)
                else:
                    await self._run_sequential(run, snapshot, store, context, initial)
            except Exception as e:
                logger.exception(f"Workflow run {run.run_id} aborted")
                run.message = f"Run aborted: {e}"

            run.status = RunStatus.COMPLETED
            run.completed_at = utc_now()
            run.node_states = store.snapshot()
            self._publish_run(run)
        return run

    def _store_run(self, run: WorkflowRun) -> None:
        """Keep at most ``max_runs`` runs, evicting the oldest finished ones."""
        self.runs[run.run_id] = run
        overflow = len(self.runs) - self.max_runs
        if overflow <= 0:
            return
        finished = [
            run_id for run_id, stored in self.runs.items()
            if stored.status in (RunStatus.COMPLETED, RunStatus.REFUSED)
        ]
        for run_id in finished[:overflow]:
            del self.runs[run_id]

    def _refuse(self, run: WorkflowRun, message: str) -> WorkflowRun:
        run.status = RunStatus.REFUSED
        run.message = message
        run.completed_at = utc_now()
        logger.info(f"[{run.run_id}] refused: {message}")
        self._publish_run(run)
        return run

    async def _run_sequential(self, run: WorkflowRun, graph: WorkflowGraph, store: NodeStateStore,
                              context: RunContext, initial: List[WorkItem]) -> None:
        """Depth-first: a node's whole branch finishes before its next sibling starts."""
        stack: List[WorkItem] = list(reversed(initial))
        while stack:
            node_id, node_input, source_id = stack.pop()
            ready, node_input = self._arrive(run, graph, context, node_id, node_input, source_id)
            if not ready:
                continue
            node, result = await self._execute_node(run, graph, store, context, node_id, node_input)
            stack.extend(reversed(self._successors(run, graph, node, result)))

    async def _run_concurrent(self, run: WorkflowRun, graph: WorkflowGraph, store: NodeStateStore,
                              context: RunContext, initial: List[WorkItem]) -> None:
        """Schedule each node as soon as it is ready; independent branches overlap."""
        queue = deque(initial)
        pending: Set[asyncio.Task] = set()
        try:
            while queue or pending:
                while queue:
                    node_id, node_input, source_id = queue.popleft()
                    ready, node_input = self._arrive(run, graph, context, node_id, node_input, source_id)
                    if ready:
                        pending.add(asyncio.create_task(
                            self._execute_node(run, graph, store, context, node_id, node_input)
                        ))
                if not pending:
                    break
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    node, result = task.result()
                    queue.extend(self._successors(run, graph, node, result))
        finally:
            for task in pending:
                task.cancel()

    def _arrive(self, run: WorkflowRun, graph: WorkflowGraph, context: RunContext, node_id: str,
                node_input: Any, source_id: Optional[str]) -> Tuple[bool, Any]:
        """
        Record an input arriving at ``node_id`` and decide whether the node
        runs now. Returns ``(ready, input)``.

        Must not await: in concurrent mode the visited check and the claim
        happen in one step of the event loop.
        """
        if node_id in context.visited:
            logger.debug(f"[{run.run_id}] {node_id}: already executed, arrival from {source_id} dropped")
            return False, None

        if run.fan_in == FanInPolicy.WAIT_FOR_ALL and source_id is not None:
            predecessors = list(dict.fromkeys(e.source for e in graph.incoming(node_id)))
            arrived = context.arrivals.setdefault(node_id, {})
            arrived[source_id] = node_input
            if any(p not in arrived for p in predecessors):
                return False, None
            node_input = [arrived[p] for p in predecessors] if len(predecessors) > 1 else node_input

        context.visited.add(node_id)
        return True, node_input

    async def _execute_node(self, run: WorkflowRun, graph: WorkflowGraph, store: NodeStateStore,
                            context: RunContext, node_id: str,
                            node_input: Any) -> Tuple[NodeRecord, NodeExecutionResult]:
        node = graph.get_node(node_id)

        store.mark_executing(node_id)
        self._add_log(run, node_id, NodeStatus.RUNNING, f"Executing {node.type} node")

        result = await self.dispatcher.dispatch(node, node_input, dict(context.outputs))

        if result.success:
            context.outputs[node_id] = result.output
            store.record_output(node_id, result.output)
            self._add_log(run, node_id, NodeStatus.COMPLETED, "Node completed")
        else:
            store.record_error(node_id, result.error)
            self._add_log(run, node_id, NodeStatus.FAILED, f"Node failed: {result.error}")
        return node, result

    def _successors(self, run: WorkflowRun, graph: WorkflowGraph, node: NodeRecord,
                    result: NodeExecutionResult) -> List[WorkItem]:
        """Work items for the targets of a node's outgoing edges, in edge order."""
        if not result.success:
            return []

        edges = graph.outgoing(node.id)
        branch = result.output.get("branch") if isinstance(result.output, dict) else None

        if node.type == NodeType.IF_ELSE.value and branch is not None:
            labelled = [e for e in edges if e.source_handle in ("true", "false")]
            if run.branch_filtering:
                edges = [e for e in edges if e.source_handle in (None, branch)]
            elif labelled:
                logger.info(
                    f"[{run.run_id}] {node.id}: branch '{branch}' computed, "
                    f"all {len(edges)} outgoing edges fire (branch filtering off)"
                )

        return [(edge.target, result.output, node.id) for edge in edges]

    # Logging and observers

    def _add_log(self, run: WorkflowRun, node_id: str, status: NodeStatus, message: str) -> None:
        log_entry = ExecutionLog(
            timestamp=utc_now(),
            node_id=node_id,
            status=status,
            message=message,
        )
        run.logs.append(log_entry)
        logger.info(f"[{run.run_id}] {node_id}: {message}")

    def _on_state_event(self, event: NodeStateEvent) -> None:
        self._schedule_broadcast(event.workflow_id, {
            "type": "node_state",
            "workflow_id": event.workflow_id,
            "node_id": event.node_id,
            "state": event.state.model_dump(mode="json"),
        })

    def _publish_run(self, run: WorkflowRun) -> None:
        self._schedule_broadcast(run.workflow_id, {
            "type": "run_status",
            "run_id": run.run_id,
            "workflow_id": run.workflow_id,
            "status": run.status.value,
            "message": run.message,
        })

    def _schedule_broadcast(self, workflow_id: str, message: Dict[str, Any]) -> None:
        if not self.websocket_connections.get(workflow_id):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._broadcast(workflow_id, message))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _broadcast(self, workflow_id: str, message: Dict[str, Any]) -> None:
        """Send a message to every socket watching a workflow, dropping dead ones."""
        connections = self.websocket_connections.get(workflow_id, []).copy()
        payload = json.dumps(message, default=str)
        for websocket in connections:
            try:
                await websocket.send_text(payload)
            except Exception as e:
                logger.warning(f"WebSocket disconnected for workflow {workflow_id}: {e}")
                self.remove_websocket_connection(workflow_id, websocket)

    def add_websocket_connection(self, workflow_id: str, websocket) -> None:
        self.get_workflow(workflow_id)
        self.websocket_connections.setdefault(workflow_id, []).append(websocket)
        logger.info(f"WebSocket connected for workflow {workflow_id}")

    def remove_websocket_connection(self, workflow_id: str, websocket) -> None:
        connections = self.websocket_connections.get(workflow_id)
        if connections and websocket in connections:
            connections.remove(websocket)
            logger.info(f"WebSocket disconnected for workflow {workflow_id}")
            if not connections:
                del self.websocket_connections[workflow_id]

    def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        return self.runs.get(run_id)
