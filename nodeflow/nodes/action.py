import logging
from typing import Any, Dict

from nodeflow.engine.models import NodeType, utc_now
from nodeflow.engine.templates import interpolate, interpolate_fields
from nodeflow.errors import RemoteCallError, UnknownTypeError, ValidationError
from nodeflow.nodes.registry import CategoryHandler, get_definition
from nodeflow.nodes.sandbox import Sandbox
from nodeflow.services.http_gateway import HttpGateway, HttpProxyRequest

logger = logging.getLogger(__name__)


def _string(config: Dict[str, Any], name: str, default: str = "") -> str:
    value = config.get(name)
    return value if isinstance(value, str) else default


async def execute_http_request(gateway: HttpGateway, config: Dict[str, Any], input: Any) -> Any:
    method = _string(config, "method", "GET").upper() or "GET"
    url = interpolate(_string(config, "url"), input)
    headers = interpolate(_string(config, "headers", "{}"), input)
    body = interpolate(_string(config, "body", "{}"), input)

    if not url.strip():
        raise ValidationError("URL is required")

    response = await gateway.forward(
        HttpProxyRequest(
            url=url,
            method=method,
            headers=headers,
            body=body if method != "GET" else None,
        )
    )
    if not response.ok:
        raise RemoteCallError(response.error or "HTTP request failed", response.status_code)
    return response.payload


async def execute_data_transform(sandbox: Sandbox, config: Dict[str, Any], input: Any) -> Any:
    return await sandbox.run_function(_string(config, "code"), input)


def execute_send_email(config: Dict[str, Any], input: Any) -> Dict[str, Any]:
    """Delivery is simulated: the receipt is built but nothing is sent."""
    fields = get_definition(NodeType.SEND_EMAIL.value).template_fields
    resolved = interpolate_fields({name: _string(config, name) for name in fields}, fields, input)
    to, subject, body = resolved["to"], resolved["subject"], resolved["body"]

    logger.info(f"Simulated email to {to!r}: {subject!r}")
    return {
        "sent": True,
        "to": to,
        "subject": subject,
        "body": body,
        "sentAt": utc_now().isoformat(),
        "message": "Email sent successfully (simulated)",
    }


def make_action_handler(gateway: HttpGateway, sandbox: Sandbox) -> CategoryHandler:
    async def execute_action(node_type: str, config: Dict[str, Any], input: Any) -> Any:
        if node_type == NodeType.HTTP_REQUEST.value:
            return await execute_http_request(gateway, config, input)
        if node_type == NodeType.DATA_TRANSFORM.value:
            return await execute_data_transform(sandbox, config, input)
        if node_type == NodeType.SEND_EMAIL.value:
            return execute_send_email(config, input)
        raise UnknownTypeError(f"Unknown action node type: {node_type}")

    return execute_action
