import time

import pytest

from nodeflow.errors import SandboxExecutionError
from nodeflow.nodes.sandbox import Sandbox


@pytest.mark.asyncio
async def test_expression_sees_only_input():
    sandbox = Sandbox()
    assert await sandbox.evaluate_expression("input > 3", 5) is True
    assert await sandbox.evaluate_expression("input.score >= 10 and input['name'] == 'x'",
                                             {"score": 10, "name": "x"}) is True
    assert await sandbox.evaluate_expression("len(input) == 2 and true", [1, 2]) is True


@pytest.mark.asyncio
async def test_expression_rejects_unknown_names():
    with pytest.raises(SandboxExecutionError):
        await Sandbox().evaluate_expression("open('/etc/passwd')", None)
    with pytest.raises(SandboxExecutionError):
        await Sandbox().evaluate_expression("__import__('os')", None)


@pytest.mark.asyncio
async def test_expression_type_errors_surface_as_sandbox_errors():
    with pytest.raises(SandboxExecutionError):
        await Sandbox().evaluate_expression("input > 3", None)


@pytest.mark.asyncio
async def test_function_body_returns_value():
    body = """
total = 0
for item in input["items"]:
    total += item["price"] * item.get("qty", 1)
return {"total": total, "count": len(input["items"])}
"""
    result = await Sandbox().run_function(body, {"items": [{"price": 2, "qty": 3}, {"price": 5}]})
    assert result == {"total": 11, "count": 2}


@pytest.mark.asyncio
async def test_function_body_without_return_yields_none():
    assert await Sandbox().run_function("x = 1", None) is None


@pytest.mark.asyncio
async def test_function_body_can_build_collections():
    body = "out = {}\nout['keys'] = sorted(input.keys())\nreturn out"
    assert await Sandbox().run_function(body, {"b": 1, "a": 2}) == {"keys": ["a", "b"]}


@pytest.mark.asyncio
async def test_function_body_errors_are_captured():
    with pytest.raises(SandboxExecutionError, match="division by zero"):
        await Sandbox().run_function("return 1 / 0", None)


@pytest.mark.asyncio
async def test_function_body_cannot_import():
    with pytest.raises(SandboxExecutionError):
        await Sandbox().run_function("import os\nreturn os.getcwd()", None)


@pytest.mark.asyncio
async def test_function_body_cannot_reach_dunder_attributes():
    with pytest.raises(SandboxExecutionError):
        await Sandbox().run_function("return input.__class__", {})


@pytest.mark.asyncio
async def test_syntax_errors_are_reported():
    with pytest.raises(SandboxExecutionError, match="compilation"):
        await Sandbox().run_function("return (", None)


@pytest.mark.asyncio
async def test_evaluation_is_time_bounded():
    sandbox = Sandbox(timeout=0.05)
    with pytest.raises(SandboxExecutionError, match="timed out"):
        await sandbox._run(lambda: time.sleep(0.3), "Slow evaluation")


@pytest.mark.asyncio
async def test_lazy_results_are_materialized():
    sandbox = Sandbox()
    assert await sandbox.run_function("return filter(lambda v: v > 1, input)", [1, 2, 3]) == [2, 3]
    assert await sandbox.run_function("return (v * 2 for v in input)", [1, 2]) == [2, 4]
    assert await sandbox.run_function("return {'pairs': enumerate(input)}", ["a"]) == {"pairs": [[0, "a"]]}


@pytest.mark.asyncio
async def test_runaway_code_is_stopped_and_frees_workers():
    sandbox = Sandbox(timeout=0.05)
    for _ in range(40):
        with pytest.raises(SandboxExecutionError, match="timed out"):
            await sandbox.run_function("while True:\n    pass", None)

    assert await sandbox.run_function("return 1", None) == 1
    assert await sandbox.evaluate_expression("input > 3", 5) is True


@pytest.mark.asyncio
async def test_deadline_cannot_be_swallowed_by_except_exception():
    body = """
while True:
    try:
        x = 1
    except Exception:
        pass
"""
    with pytest.raises(SandboxExecutionError, match="timed out"):
        await Sandbox(timeout=0.05).run_function(body, None)


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [
    "try:\n    return 1\nexcept:\n    return 2",
    "try:\n    return 1\nexcept BaseException:\n    return 2",
    "try:\n    return 1\nexcept (ValueError, BaseException):\n    return 2",
    "try:\n    return 1\nfinally:\n    x = 2",
])
async def test_handlers_that_could_hide_the_deadline_are_rejected(body):
    with pytest.raises(SandboxExecutionError, match="compilation"):
        await Sandbox().run_function(body, None)
