from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
import json
import logging
import uuid

from nodeflow.config import get_settings
from nodeflow.engine.dispatcher import NodeDispatcher
from nodeflow.engine.engine import WorkflowEngine
from nodeflow.engine.models import (
    Edge, ExecutionMode, FanInPolicy, NodeRecord, NodeState, NodeView, WorkflowGraph, WorkflowRun
)
from nodeflow.errors import GraphIntegrityError, WorkflowBusyError, WorkflowNotFoundError
from nodeflow.nodes import NODE_DEFINITIONS, Sandbox, build_default_registry
from nodeflow.services.ai_service import AICompletionService
from nodeflow.services.http_gateway import HttpGateway, HttpProxyRequest
from nodeflow.workflows.lead_intake import create_lead_intake_workflow, SAMPLE_LEAD

logger = logging.getLogger(__name__)

router = APIRouter()

# Global instances - initialized once when module loads
settings = get_settings()
http_gateway = HttpGateway(settings)
ai_service = AICompletionService(settings)
sandbox = Sandbox(timeout=settings.sandbox_timeout_seconds)
engine = WorkflowEngine(NodeDispatcher(build_default_registry(http_gateway, ai_service, sandbox)))


# Request/Response models
class NodePayload(BaseModel):
    id: Optional[str] = None
    type: str
    label: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class EdgePayload(BaseModel):
    id: Optional[str] = None
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class CreateWorkflowRequest(BaseModel):
    name: str = "Untitled workflow"
    nodes: List[NodePayload] = Field(default_factory=list)
    edges: List[EdgePayload] = Field(default_factory=list)


class CreateWorkflowResponse(BaseModel):
    workflow_id: str
    message: str


class UpdateNodeRequest(BaseModel):
    label: Optional[str] = None
    config: Optional[Dict[str, Any]] = None


class RunWorkflowRequest(BaseModel):
    fan_in: FanInPolicy = FanInPolicy.FIRST_ARRIVAL
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    branch_filtering: bool = False


class RunWorkflowResponse(BaseModel):
    run_id: str
    workflow_id: str
    status: str
    message: Optional[str] = None
    node_states: Dict[str, NodeState]
    logs: list


class AIExecuteRequest(BaseModel):
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    input: Any = None


def to_node(payload: NodePayload) -> NodeRecord:
    """Fill id, label and default config the way the editor does when a node is dropped."""
    definition = NODE_DEFINITIONS.get(payload.type)
    config = {**(definition.default_config if definition else {}), **(payload.config or {})}
    return NodeRecord(
        id=payload.id or f"node-{uuid.uuid4().hex[:8]}",
        type=payload.type,
        label=payload.label or (definition.label if definition else payload.type),
        config=config,
    )


def to_edge(payload: EdgePayload) -> Edge:
    return Edge(
        id=payload.id or f"e{payload.source}-{payload.target}",
        source=payload.source,
        target=payload.target,
        source_handle=payload.source_handle,
        target_handle=payload.target_handle,
    )


def run_response(run: WorkflowRun) -> RunWorkflowResponse:
    return RunWorkflowResponse(
        run_id=run.run_id,
        workflow_id=run.workflow_id,
        status=run.status.value,
        message=run.message,
        node_states=run.node_states,
        logs=[{
            "timestamp": log.timestamp.isoformat(),
            "node_id": log.node_id,
            "status": log.status.value,
            "message": log.message
        } for log in run.logs]
    )


def raise_http(error: Exception) -> None:
    """Map registry errors onto HTTP status codes."""
    if isinstance(error, WorkflowNotFoundError):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, WorkflowBusyError):
        raise HTTPException(status_code=409, detail=str(error))
    raise HTTPException(status_code=400, detail=str(error))


@router.post("/workflows", response_model=CreateWorkflowResponse)
async def create_workflow(request: CreateWorkflowRequest):
    """
    Create a new workflow graph.

    Node ids, labels and configs missing from the payload are filled from
    the node definitions. The graph is checked for structural integrity.
    """
    try:
        graph = WorkflowGraph(
            name=request.name,
            nodes=[to_node(n) for n in request.nodes],
            edges=[to_edge(e) for e in request.edges],
        )
        workflow_id = engine.create_workflow(graph)
    except GraphIntegrityError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CreateWorkflowResponse(
        workflow_id=workflow_id,
        message=f"Workflow '{request.name}' created successfully"
    )


@router.get("/workflows")
async def list_workflows():
    return {
        "workflows": [
            {
                "workflow_id": workflow_id,
                "name": graph.name,
                "node_count": len(graph.nodes),
                "edge_count": len(graph.edges),
                "running": engine.is_running(workflow_id),
            }
            for workflow_id, graph in engine.workflows.items()
        ]
    }


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str):
    """Workflow graph with every node merged with its current state."""
    try:
        graph = engine.get_workflow(workflow_id)
        nodes: List[NodeView] = engine.node_views(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "workflow_id": graph.id,
        "name": graph.name,
        "nodes": [node.model_dump(mode="json") for node in nodes],
        "edges": [edge.model_dump() for edge in graph.edges],
    }


@router.post("/workflows/{workflow_id}/nodes")
async def add_node(workflow_id: str, request: NodePayload):
    try:
        node = engine.add_node(workflow_id, to_node(request))
    except (WorkflowNotFoundError, WorkflowBusyError, GraphIntegrityError) as e:
        raise_http(e)
    return node.model_dump()


@router.patch("/workflows/{workflow_id}/nodes/{node_id}")
async def update_node(workflow_id: str, node_id: str, request: UpdateNodeRequest):
    try:
        node = engine.update_node(workflow_id, node_id, label=request.label, config=request.config)
    except (WorkflowNotFoundError, WorkflowBusyError, GraphIntegrityError) as e:
        raise_http(e)
    return node.model_dump()


@router.delete("/workflows/{workflow_id}/nodes/{node_id}")
async def delete_node(workflow_id: str, node_id: str):
    """Delete a node and every edge connected to it."""
    try:
        engine.delete_node(workflow_id, node_id)
    except (WorkflowNotFoundError, WorkflowBusyError, GraphIntegrityError) as e:
        raise_http(e)
    return {"deleted": node_id}


@router.post("/workflows/{workflow_id}/edges")
async def add_edge(workflow_id: str, request: EdgePayload):
    try:
        edge = engine.add_edge(workflow_id, to_edge(request))
    except (WorkflowNotFoundError, WorkflowBusyError, GraphIntegrityError) as e:
        raise_http(e)
    return edge.model_dump()


@router.delete("/workflows/{workflow_id}/edges/{edge_id}")
async def delete_edge(workflow_id: str, edge_id: str):
    try:
        engine.delete_edge(workflow_id, edge_id)
    except (WorkflowNotFoundError, WorkflowBusyError, GraphIntegrityError) as e:
        raise_http(e)
    return {"deleted": edge_id}


@router.post("/workflows/{workflow_id}/clear")
async def clear_workflow(workflow_id: str):
    try:
        engine.clear_workflow(workflow_id)
    except (WorkflowNotFoundError, WorkflowBusyError) as e:
        raise_http(e)
    return {"cleared": workflow_id}


@router.post("/workflows/{workflow_id}/run", response_model=RunWorkflowResponse)
async def run_workflow(workflow_id: str, request: Optional[RunWorkflowRequest] = None):
    """
    Execute a workflow from its trigger nodes.

    A refused run (no nodes, no trigger) is not an HTTP error: it comes back
    with status ``refused`` and the reason in ``message``. Individual node
    failures are reported in ``node_states``.
    """
    request = request or RunWorkflowRequest()
    try:
        run = await engine.run_workflow(
            workflow_id,
            fan_in=request.fan_in,
            mode=request.mode,
            branch_filtering=request.branch_filtering,
        )
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return run_response(run)


@router.get("/runs/{run_id}", response_model=RunWorkflowResponse)
async def get_run(run_id: str):
    run = engine.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Workflow run not found")
    return run_response(run)


@router.get("/workflows/{workflow_id}/state")
async def get_workflow_state(workflow_id: str):
    """Current run-scoped state of every node, as an observer would see it."""
    try:
        store = engine.get_state_store(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "workflow_id": workflow_id,
        "running": engine.is_running(workflow_id),
        "nodes": {node_id: state.model_dump(mode="json") for node_id, state in store.snapshot().items()},
    }


@router.get("/node-types")
async def list_node_types():
    """Every node type the engine can execute, with category and default config."""
    return {
        "node_types": [
            definition.model_dump(mode="json", exclude={"template_fields"})
            for definition in NODE_DEFINITIONS.values()
        ]
    }


@router.post("/http-proxy")
async def http_proxy(request: HttpProxyRequest):
    response = await http_gateway.forward(request)
    return JSONResponse(status_code=response.status_code, content=response.payload)


@router.post("/ai/execute")
async def ai_execute(request: AIExecuteRequest):
    response = await ai_service.execute(request.type, request.config, request.input)
    return JSONResponse(status_code=response.status_code, content=response.payload)


@router.post("/demo/lead-intake")
async def demo_lead_intake(lead: Optional[Dict[str, Any]] = None):
    """Create and run the bundled lead-intake workflow on a sample or provided lead."""
    graph = create_lead_intake_workflow(lead or SAMPLE_LEAD)
    workflow_id = engine.create_workflow(graph)
    run = await engine.run_workflow(workflow_id)

    return {
        "workflow_id": workflow_id,
        "run_id": run.run_id,
        "status": run.status.value,
        "results": {
            node_id: state.model_dump(mode="json") for node_id, state in run.node_states.items()
        },
    }


@router.websocket("/ws/workflows/{workflow_id}")
async def websocket_workflow_state(websocket: WebSocket, workflow_id: str):
    """WebSocket endpoint streaming node state changes of a workflow"""
    await websocket.accept()

    try:
        engine.add_websocket_connection(workflow_id, websocket)
    except WorkflowNotFoundError as e:
        await websocket.send_text(json.dumps({"type": "error", "message": str(e)}))
        await websocket.close(code=1008)
        return

    try:
        await websocket.send_text(json.dumps({
            "type": "connected",
            "message": f"Connected to workflow {workflow_id}",
            "workflow_id": workflow_id
        }))

        # Current state so late subscribers start from a full picture
        for node_id, state in engine.state_stores[workflow_id].snapshot().items():
            await websocket.send_text(json.dumps({
                "type": "node_state",
                "workflow_id": workflow_id,
                "node_id": node_id,
                "state": state.model_dump(mode="json"),
            }, default=str))

        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                await websocket.send_text(json.dumps({"type": "error", "message": "Invalid JSON"}))
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))

    except WebSocketDisconnect:
        pass
    finally:
        engine.remove_websocket_connection(workflow_id, websocket)
