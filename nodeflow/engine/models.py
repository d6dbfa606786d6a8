from typing import Dict, Any, List, Optional, Set
from pydantic import BaseModel, Field
from enum import Enum
import uuid
from datetime import datetime, timezone


class NodeType(str, Enum):
    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    AI_TEXT_GENERATOR = "aiTextGenerator"
    AI_ANALYZER = "aiAnalyzer"
    AI_CHATBOT = "aiChatbot"
    AI_DATA_EXTRACTOR = "aiDataExtractor"
    HTTP_REQUEST = "httpRequest"
    DATA_TRANSFORM = "dataTransform"
    SEND_EMAIL = "sendEmail"
    IF_ELSE = "ifElse"
    DELAY = "delay"


class NodeCategory(str, Enum):
    TRIGGER = "trigger"
    AI = "ai"
    ACTION = "action"
    LOGIC = "logic"


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    REFUSED = "refused"


class FanInPolicy(str, Enum):
    """How a node with several incoming edges treats multiple arrivals."""
    FIRST_ARRIVAL = "first_arrival"
    WAIT_FOR_ALL = "wait_for_all"


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    CONCURRENT = "concurrent"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NodeRecord(BaseModel):
    """A node placed on the canvas: identity, declared type and configuration"""
    id: str
    type: str  # unregistered types are accepted here and rejected at dispatch
    label: str = ""
    config: Dict[str, Any] = Field(default_factory=dict)


class Edge(BaseModel):
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None


class NodeState(BaseModel):
    """Run-scoped state of a single node"""
    output: Any = None
    error: Optional[str] = None
    is_executing: bool = False
    status: NodeStatus = NodeStatus.PENDING


class NodeView(NodeRecord):
    """Node record merged with its current run-scoped state"""
    output: Any = None
    error: Optional[str] = None
    is_executing: bool = False
    status: NodeStatus = NodeStatus.PENDING


class WorkflowGraph(BaseModel):
    """Complete workflow graph: nodes in canvas order plus ordered edges"""
    id: str = Field(default_factory=lambda: f"wf_{uuid.uuid4().hex[:12]}")
    name: str = "Untitled workflow"
    nodes: List[NodeRecord] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[NodeRecord]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def incoming(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == node_id]

    def outgoing(self, node_id: str) -> List[Edge]:
        return [e for e in self.edges if e.source == node_id]


class NodeExecutionResult(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: Any) -> "NodeExecutionResult":
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, error: str) -> "NodeExecutionResult":
        return cls(success=False, error=error)


class RunContext(BaseModel):
    """Transient bookkeeping for one execution request"""
    visited: Set[str] = Field(default_factory=set)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    # target node id -> {source node id: delivered output}, for WAIT_FOR_ALL
    arrivals: Dict[str, Dict[str, Any]] = Field(default_factory=dict)


class ExecutionLog(BaseModel):
    """Log entry for workflow execution"""
    timestamp: datetime
    node_id: str
    status: NodeStatus
    message: str


class WorkflowRun(BaseModel):
    """Runtime information for a workflow execution"""
    run_id: str
    workflow_id: str
    status: RunStatus
    message: Optional[str] = None
    fan_in: FanInPolicy = FanInPolicy.FIRST_ARRIVAL
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    branch_filtering: bool = False
    logs: List[ExecutionLog] = Field(default_factory=list)
    node_states: Dict[str, NodeState] = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def create(cls, workflow_id: str, **options: Any) -> "WorkflowRun":
        return cls(
            run_id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            status=RunStatus.IDLE,
            created_at=utc_now(),
            **options,
        )
