import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict

from nodeflow.engine.models import NodeType
from nodeflow.errors import UnknownTypeError, ValidationError
from nodeflow.nodes.registry import CategoryHandler
from nodeflow.nodes.sandbox import Sandbox

logger = logging.getLogger(__name__)

# "javascript" is what older editor builds store for expression conditions
EXPRESSION_OPERATORS = ("expression", "javascript")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def parse_duration(value: Any) -> int:
    """Leading integer of ``value``; anything unparsable is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT.match(value) if isinstance(value, str) else None
    return int(match.group(1)) if match else 0


def delay_milliseconds(config: Dict[str, Any]) -> int:
    duration = parse_duration(config.get("duration", "0"))
    unit = config.get("unit") or "milliseconds"
    ms = duration * 1000 if unit == "seconds" else duration
    return max(ms, 0)


async def execute_if_else(sandbox: Sandbox, config: Dict[str, Any], input: Any) -> Dict[str, Any]:
    condition = config.get("condition") or ""
    operator = config.get("operator") or "expression"
    if not isinstance(condition, str):
        raise ValidationError("Condition must be a string expression")

    result = False
    if operator in EXPRESSION_OPERATORS and condition.strip():
        result = bool(await sandbox.evaluate_expression(condition, input))

    return {
        "condition": result,
        "branch": "true" if result else "false",
        "input": input,
    }


async def execute_delay(
    config: Dict[str, Any], input: Any, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
) -> Dict[str, Any]:
    ms = delay_milliseconds(config)
    await sleep(ms / 1000)
    return {"delayed": ms, "input": input}


def make_logic_handler(sandbox: Sandbox) -> CategoryHandler:
    async def execute_logic(node_type: str, config: Dict[str, Any], input: Any) -> Any:
        if node_type == NodeType.IF_ELSE.value:
            return await execute_if_else(sandbox, config, input)
        if node_type == NodeType.DELAY.value:
            return await execute_delay(config, input)
        raise UnknownTypeError(f"Unknown logic node type: {node_type}")

    return execute_logic
