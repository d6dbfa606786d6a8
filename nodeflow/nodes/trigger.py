from typing import Any, Dict

from nodeflow.engine.models import utc_now


async def execute_trigger(node_type: str, config: Dict[str, Any], input: Any) -> Any:
    """Pass a present input through, otherwise describe the trigger event."""
    if input is not None and input is not False:
        return input
    return {
        "triggeredAt": utc_now().isoformat(),
        "config": config,
    }
