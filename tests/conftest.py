"""
Pytest configuration and fixtures for engine tests.
"""

from typing import Any, Dict, List, Optional, Tuple

import pytest

from nodeflow.engine.dispatcher import NodeDispatcher
from nodeflow.engine.engine import WorkflowEngine
from nodeflow.engine.models import Edge, NodeRecord, WorkflowGraph
from nodeflow.nodes import Sandbox, build_default_registry
from nodeflow.services.http_gateway import GatewayResponse, HttpProxyRequest


class FakeGateway:
    """HTTP gateway double answering every request with a fixed response per URL."""

    def __init__(self, responses: Optional[Dict[str, GatewayResponse]] = None):
        self.responses = responses or {}
        self.requests: List[HttpProxyRequest] = []

    async def forward(self, request: HttpProxyRequest) -> GatewayResponse:
        self.requests.append(request)
        if request.url in self.responses:
            return self.responses[request.url]
        return GatewayResponse(
            status_code=200,
            payload={"status": 200, "statusText": "OK", "headers": {}, "data": {"url": request.url}},
        )


class FakeAIService:
    def __init__(self, response: Optional[GatewayResponse] = None):
        self.response = response or GatewayResponse(
            status_code=200, payload={"generatedText": "hello", "model": "test", "usage": None}
        )
        self.calls: List[Tuple[str, Dict[str, Any], Any]] = []

    async def execute(self, node_type: str, config: Dict[str, Any], input: Any) -> GatewayResponse:
        self.calls.append((node_type, config, input))
        return self.response


def build_graph(nodes: List[Tuple[str, str, Dict[str, Any]]], edges: List[Tuple[str, str]],
                handles: Optional[Dict[Tuple[str, str], str]] = None) -> WorkflowGraph:
    """Build a graph from ``(id, type, config)`` triples and ``(source, target)`` pairs."""
    handles = handles or {}
    return WorkflowGraph(
        name="test",
        nodes=[NodeRecord(id=i, type=t, config=c) for i, t, c in nodes],
        edges=[
            Edge(id=f"e{s}-{t}", source=s, target=t, source_handle=handles.get((s, t)))
            for s, t in edges
        ],
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def ai_service() -> FakeAIService:
    return FakeAIService()


@pytest.fixture
def sandbox() -> Sandbox:
    return Sandbox(timeout=2.0)


@pytest.fixture
def engine(gateway, ai_service, sandbox) -> WorkflowEngine:
    return WorkflowEngine(NodeDispatcher(build_default_registry(gateway, ai_service, sandbox)))
