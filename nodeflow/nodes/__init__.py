"""
Node definitions and category handlers

Every node type belongs to one of four categories (trigger, ai, action,
logic); the category handler performs the node's work.
"""

from nodeflow.engine.models import NodeCategory
from nodeflow.nodes.action import make_action_handler
from nodeflow.nodes.ai import make_ai_handler
from nodeflow.nodes.logic import make_logic_handler
from nodeflow.nodes.registry import (
    NODE_DEFINITIONS,
    HandlerRegistry,
    NodeDefinition,
    get_definition,
)
from nodeflow.nodes.sandbox import Sandbox
from nodeflow.nodes.trigger import execute_trigger
from nodeflow.services.ai_service import AICompletionService
from nodeflow.services.http_gateway import HttpGateway


def build_default_registry(
    gateway: HttpGateway, ai_service: AICompletionService, sandbox: Sandbox
) -> HandlerRegistry:
    """Register the handlers for the four built-in categories."""
    registry = HandlerRegistry()
    registry.register(NodeCategory.TRIGGER, execute_trigger)
    registry.register(NodeCategory.AI, make_ai_handler(ai_service))
    registry.register(NodeCategory.ACTION, make_action_handler(gateway, sandbox))
    registry.register(NodeCategory.LOGIC, make_logic_handler(sandbox))
    return registry


__all__ = [
    "NODE_DEFINITIONS",
    "HandlerRegistry",
    "NodeDefinition",
    "Sandbox",
    "build_default_registry",
    "get_definition",
]
