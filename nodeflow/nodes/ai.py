import logging
from typing import Any, Dict

from nodeflow.errors import RemoteCallError
from nodeflow.nodes.registry import CategoryHandler
from nodeflow.services.ai_service import AICompletionService

logger = logging.getLogger(__name__)


def make_ai_handler(ai_service: AICompletionService) -> CategoryHandler:
    """Build the handler shared by the four AI node subtypes."""

    async def execute_ai(node_type: str, config: Dict[str, Any], input: Any) -> Any:
        # the service renders the prompt fields against input exactly once
        try:
            response = await ai_service.execute(node_type, config, input)
        except Exception as e:
            raise RemoteCallError(str(e) or "Failed to execute AI node") from e

        if not response.ok:
            raise RemoteCallError(response.error or "AI execution failed", response.status_code)
        # payload shape belongs to the service, it is forwarded untouched
        return response.payload

    return execute_ai
