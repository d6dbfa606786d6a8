"""
External collaborators called by node handlers: the outbound HTTP gateway
and the AI completion service.
"""

from .http_gateway import HttpGateway, HttpProxyRequest, GatewayResponse
from .ai_service import AICompletionService

__all__ = ["HttpGateway", "HttpProxyRequest", "GatewayResponse", "AICompletionService"]
