import pytest

from nodeflow.errors import RemoteCallError, UnknownTypeError, ValidationError, SandboxExecutionError
from nodeflow.nodes.action import make_action_handler
from nodeflow.nodes.ai import make_ai_handler
from nodeflow.nodes.logic import delay_milliseconds, execute_delay, make_logic_handler, parse_duration
from nodeflow.nodes.sandbox import Sandbox
from nodeflow.nodes.trigger import execute_trigger
from nodeflow.services.http_gateway import GatewayResponse

from tests.conftest import FakeAIService, FakeGateway


@pytest.mark.asyncio
async def test_trigger_passes_present_input_through():
    assert await execute_trigger("webhook", {}, {"a": 1}) == {"a": 1}


@pytest.mark.asyncio
async def test_trigger_synthesizes_event_without_input():
    output = await execute_trigger("schedule", {"interval": "5"}, None)
    assert output["config"] == {"interval": "5"}
    assert "triggeredAt" in output

    output = await execute_trigger("webhook", {}, False)
    assert "triggeredAt" in output


@pytest.mark.asyncio
async def test_http_request_interpolates_and_forwards():
    gateway = FakeGateway()
    handler = make_action_handler(gateway, Sandbox())

    output = await handler("httpRequest", {
        "method": "post",
        "url": "api.example.com/users/{{input.id}}",
        "headers": '{"X-Trace": "{{input.trace}}"}',
        "body": '{"name": "{{input.name}}"}',
    }, {"id": 4, "trace": "t-1", "name": "Ada"})

    request = gateway.requests[0]
    assert request.url == "api.example.com/users/4"
    assert request.method == "POST"
    assert request.headers == '{"X-Trace": "t-1"}'
    assert request.body == '{"name": "Ada"}'
    assert output["status"] == 200


@pytest.mark.asyncio
async def test_http_get_sends_no_body():
    gateway = FakeGateway()
    handler = make_action_handler(gateway, Sandbox())
    await handler("httpRequest", {"url": "https://x.test", "body": '{"a": 1}'}, None)
    assert gateway.requests[0].method == "GET"
    assert gateway.requests[0].body is None


@pytest.mark.asyncio
async def test_http_request_without_url_is_validation_error_and_makes_no_call():
    gateway = FakeGateway()
    handler = make_action_handler(gateway, Sandbox())

    with pytest.raises(ValidationError, match="URL is required"):
        await handler("httpRequest", {"url": "   "}, None)
    with pytest.raises(ValidationError):
        await handler("httpRequest", {"url": 12}, None)
    assert gateway.requests == []


@pytest.mark.asyncio
async def test_http_gateway_failure_carries_message():
    gateway = FakeGateway({
        "https://down.test": GatewayResponse(status_code=500, payload={"error": "fetch failed"}),
    })
    handler = make_action_handler(gateway, Sandbox())

    with pytest.raises(RemoteCallError, match="fetch failed"):
        await handler("httpRequest", {"url": "https://down.test"}, None)


@pytest.mark.asyncio
async def test_data_transform_returns_function_result():
    handler = make_action_handler(FakeGateway(), Sandbox())
    output = await handler("dataTransform", {"code": "return {'double': input['n'] * 2}"}, {"n": 21})
    assert output == {"double": 42}


@pytest.mark.asyncio
async def test_data_transform_errors_propagate():
    handler = make_action_handler(FakeGateway(), Sandbox())
    with pytest.raises(SandboxExecutionError):
        await handler("dataTransform", {"code": "return input['missing']"}, {})


@pytest.mark.asyncio
async def test_send_email_is_simulated():
    handler = make_action_handler(FakeGateway(), Sandbox())
    output = await handler("sendEmail", {
        "to": "{{input.email}}",
        "subject": "Welcome {{input.name}}",
        "body": "Hi",
    }, {"email": "ada@example.com", "name": "Ada"})

    assert output["sent"] is True
    assert output["to"] == "ada@example.com"
    assert output["subject"] == "Welcome Ada"
    assert output["body"] == "Hi"
    assert "sentAt" in output


@pytest.mark.asyncio
async def test_unknown_action_subtype():
    handler = make_action_handler(FakeGateway(), Sandbox())
    with pytest.raises(UnknownTypeError):
        await handler("ifElse", {}, None)


@pytest.mark.asyncio
async def test_if_else_true_branch():
    handler = make_logic_handler(Sandbox())
    output = await handler("ifElse", {"condition": "input > 3"}, 5)
    assert output == {"condition": True, "branch": "true", "input": 5}


@pytest.mark.asyncio
async def test_if_else_false_and_empty_condition():
    handler = make_logic_handler(Sandbox())
    assert (await handler("ifElse", {"condition": "input > 3"}, 1))["branch"] == "false"
    assert (await handler("ifElse", {"condition": ""}, 1))["condition"] is False
    assert (await handler("ifElse", {"condition": "input > 3", "operator": "javascript"}, 9))["condition"] is True


@pytest.mark.asyncio
async def test_if_else_evaluation_error():
    handler = make_logic_handler(Sandbox())
    with pytest.raises(SandboxExecutionError):
        await handler("ifElse", {"condition": "input.missing > 3"}, {})


def test_duration_parsing():
    assert parse_duration("200") == 200
    assert parse_duration("200ms") == 200
    assert parse_duration("abc") == 0
    assert parse_duration(None) == 0
    assert parse_duration(3) == 3
    assert delay_milliseconds({"duration": "2", "unit": "seconds"}) == 2000
    assert delay_milliseconds({"duration": "-5"}) == 0


@pytest.mark.asyncio
async def test_delay_waits_and_passes_input():
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    output = await execute_delay({"duration": "200", "unit": "milliseconds"}, {"a": 1}, sleep=fake_sleep)
    assert output == {"delayed": 200, "input": {"a": 1}}
    assert slept == [0.2]


@pytest.mark.asyncio
async def test_ai_handler_forwards_config_and_returns_payload_verbatim():
    ai_service = FakeAIService()
    handler = make_ai_handler(ai_service)

    output = await handler("aiTextGenerator", {"prompt": "Summarize {{input.text}}", "temperature": "0.2"},
                           {"text": "the news"})

    node_type, config, input = ai_service.calls[0]
    assert node_type == "aiTextGenerator"
    assert config == {"prompt": "Summarize {{input.text}}", "temperature": "0.2"}
    assert input == {"text": "the news"}
    assert output == ai_service.response.payload


@pytest.mark.asyncio
async def test_ai_handler_failure_becomes_remote_call_error():
    ai_service = FakeAIService(GatewayResponse(status_code=500, payload={"error": "credentials missing"}))
    handler = make_ai_handler(ai_service)

    with pytest.raises(RemoteCallError, match="credentials missing"):
        await handler("aiChatbot", {}, None)


@pytest.mark.asyncio
async def test_ai_handler_transport_exception():
    class Exploding:
        async def execute(self, *args):
            raise ConnectionError("connection reset")

    with pytest.raises(RemoteCallError, match="connection reset"):
        await make_ai_handler(Exploding())("aiAnalyzer", {}, None)
