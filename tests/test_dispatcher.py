import pytest

from nodeflow.engine.dispatcher import NodeDispatcher
from nodeflow.engine.models import NodeCategory, NodeRecord
from nodeflow.nodes.registry import HandlerRegistry


@pytest.mark.asyncio
async def test_unknown_type_fails_without_calling_handlers():
    calls = []

    async def trigger(node_type, config, input):
        calls.append(node_type)
        return input

    registry = HandlerRegistry()
    registry.register(NodeCategory.TRIGGER, trigger)
    dispatcher = NodeDispatcher(registry)

    result = await dispatcher.dispatch(NodeRecord(id="n1", type="teleport"), None)
    assert not result.success
    assert result.error == "Unknown node type: teleport"
    assert calls == []


@pytest.mark.asyncio
async def test_missing_category_handler_is_unknown_type():
    dispatcher = NodeDispatcher(HandlerRegistry())
    result = await dispatcher.dispatch(NodeRecord(id="n1", type="delay"), None)
    assert not result.success
    assert result.error == "Unsupported node category: logic"


@pytest.mark.asyncio
async def test_routes_by_category_and_passes_config_copy():
    seen = {}

    async def action(node_type, config, input):
        seen["type"] = node_type
        config["mutated"] = True
        return {"echo": input}

    registry = HandlerRegistry()
    registry.register(NodeCategory.ACTION, action)
    node = NodeRecord(id="n1", type="sendEmail", config={"to": "x"})

    result = await NodeDispatcher(registry).dispatch(node, 7, outputs={"n0": 1})
    assert result.success
    assert result.output == {"echo": 7}
    assert seen["type"] == "sendEmail"
    assert "mutated" not in node.config


@pytest.mark.asyncio
async def test_unexpected_exceptions_are_contained():
    async def broken(node_type, config, input):
        raise KeyError("oops")

    registry = HandlerRegistry()
    registry.register(NodeCategory.LOGIC, broken)
    result = await NodeDispatcher(registry).dispatch(NodeRecord(id="n1", type="ifElse"), None)
    assert not result.success
    assert "oops" in result.error


def test_registry_lists_categories():
    registry = HandlerRegistry()
    registry.register("ai", lambda *a: None)
    assert registry.list_categories() == ["ai"]
