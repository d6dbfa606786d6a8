import logging
from typing import Any, Dict, Optional

from nodeflow.engine.models import NodeExecutionResult, NodeRecord
from nodeflow.errors import NodeflowError, UnknownTypeError
from nodeflow.nodes.registry import HandlerRegistry, get_definition

logger = logging.getLogger(__name__)


class NodeDispatcher:
    """Routes a node to the handler of its category and contains every failure."""

    def __init__(self, registry: HandlerRegistry):
        self.registry = registry

    async def dispatch(
        self, node: NodeRecord, input: Any, outputs: Optional[Dict[str, Any]] = None
    ) -> NodeExecutionResult:
        """
        Execute ``node`` with ``input`` and return its result.

        ``outputs`` holds every output produced so far in the run, keyed by
        node id. No built-in handler reads it; it is accepted so custom
        handlers registered later keep a stable call site.
        """
        try:
            handler = self._resolve(node)
            output = await handler(node.type, dict(node.config), input)
        except NodeflowError as e:
            logger.warning(f"Node {node.id} ({node.type}) failed: {e}")
            return NodeExecutionResult.failed(str(e))
        except Exception as e:
            logger.exception(f"Node {node.id} ({node.type}) raised unexpectedly")
            return NodeExecutionResult.failed(str(e) or "Execution failed")
        return NodeExecutionResult.ok(output)

    def _resolve(self, node: NodeRecord):
        if not isinstance(node.type, str) or not node.type:
            raise UnknownTypeError(f"Node {node.id} is missing a valid type")

        definition = get_definition(node.type)
        if definition is None:
            raise UnknownTypeError(f"Unknown node type: {node.type}")

        return self.registry.get(definition.category)
