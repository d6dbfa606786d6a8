"""
Sandboxed evaluation of user-supplied code.

Conditions are single expressions evaluated with simpleeval; transform code is
a function body compiled with RestrictedPython. In both cases the only value
exposed to the code is ``input``, there is no import or I/O capability, and
evaluation runs in a worker thread bounded by a wall-clock timeout.
"""

import ast
import asyncio
import logging
import operator
import sys
import textwrap
import time
from collections.abc import Iterator
from typing import Any, Callable, Dict

from RestrictedPython import RestrictingNodeTransformer, compile_restricted, limited_builtins, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)
from RestrictedPython.PrintCollector import PrintCollector
from simpleeval import EvalWithCompoundTypes

from nodeflow.errors import SandboxExecutionError

logger = logging.getLogger(__name__)

TRANSFORM_FUNCTION = "transform"

EXPRESSION_NAMES: Dict[str, Any] = {
    "true": True,
    "false": False,
    "null": None,
    "none": None,
    "True": True,
    "False": False,
    "None": None,
}

SAFE_FUNCTIONS: Dict[str, Callable] = {
    "len": len,
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "any": any,
    "all": all,
    "sorted": sorted,
    "sum": sum,
}

_INPLACE_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "|=": operator.ior,
    "&=": operator.iand,
}


def _inplacevar(op: str, target: Any, value: Any) -> Any:
    try:
        return _INPLACE_OPERATORS[op](target, value)
    except KeyError:
        raise SyntaxError(f"Operator {op} is not allowed") from None


def _apply(func: Callable, *args: Any, **kwargs: Any) -> Any:
    return func(*args, **kwargs)


def _transform_builtins() -> Dict[str, Any]:
    builtins = dict(safe_builtins)
    builtins.update(limited_builtins)
    builtins.pop("BaseException", None)
    builtins.update(
        {
            "dict": dict,
            "list": list,
            "set": set,
            "enumerate": enumerate,
            "filter": filter,
            "map": map,
            "reversed": reversed,
            "min": min,
            "max": max,
            "sum": sum,
            "any": any,
            "all": all,
        }
    )
    return builtins


def _error_message(exc: BaseException) -> str:
    message = str(exc)
    return message if message else exc.__class__.__name__


class _DeadlineExceeded(BaseException):
    """Raised into user code once its time budget is spent; ``except Exception`` cannot catch it."""


class TransformPolicy(RestrictingNodeTransformer):
    """
    RestrictedPython policy for transform bodies.

    On top of the default restrictions, handlers that could catch the
    deadline exception (bare ``except``, ``except BaseException``) and
    ``finally`` blocks are rejected.
    """

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> Any:
        caught = node.type.elts if isinstance(node.type, ast.Tuple) else [node.type]
        for name in caught:
            if name is None or (isinstance(name, ast.Name) and name.id == "BaseException"):
                self.error(node, "Only Exception subclasses may be caught.")
        return super().visit_ExceptHandler(node)

    def visit_Try(self, node: ast.Try) -> Any:
        if node.finalbody:
            self.error(node, "finally blocks are not allowed.")
        return super().visit_Try(node)


def _materialize(value: Any) -> Any:
    """Turn lazy iterators (map, filter, generators) into lists, recursively."""
    if isinstance(value, dict):
        return {key: _materialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_materialize(item) for item in value]
    if isinstance(value, Iterator):
        return [_materialize(item) for item in value]
    return value


def _bounded(func: Callable[[], Any], timeout: float, label: str) -> Callable[[], Any]:
    """
    Wrap ``func`` so that Python code it runs stops once ``timeout`` elapses.

    A trace function installed in the worker thread raises into the running
    frame at the first line executed past the deadline, which frees the
    worker. Long calls into C code (``sorted`` on a huge list) are only
    interrupted when they return.
    """

    def run() -> Any:
        deadline = time.monotonic() + timeout

        def trace(frame, event, arg):
            if time.monotonic() > deadline:
                raise _DeadlineExceeded()
            return trace

        sys.settrace(trace)
        try:
            return func()
        except _DeadlineExceeded:
            raise SandboxExecutionError(f"{label} timed out after {timeout}s") from None
        finally:
            sys.settrace(None)

    return run


class Sandbox:
    """Capability-restricted evaluator with ``input`` as the only binding."""

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def evaluate_expression(self, source: str, input: Any) -> Any:
        """Evaluate a single expression such as ``input.score > 3``."""
        evaluator = EvalWithCompoundTypes(
            names={**EXPRESSION_NAMES, "input": input},
            functions=dict(SAFE_FUNCTIONS),
        )
        return await self._run(lambda: evaluator.eval(source), "Condition evaluation")

    async def run_function(self, body: str, input: Any) -> Any:
        """
        Run ``body`` as the body of a function taking ``input``.

        The value of the body's ``return`` statement is the result; a body
        without one yields ``None``.
        """
        source = f"def {TRANSFORM_FUNCTION}(input):\n" + textwrap.indent(body.strip() or "pass", "    ")

        try:
            byte_code = compile_restricted(source, filename="<transform>", mode="exec", policy=TransformPolicy)
        except SyntaxError as e:
            raise SandboxExecutionError(f"Code compilation failed: {_error_message(e)}") from e

        namespace: Dict[str, Any] = {
            "__builtins__": _transform_builtins(),
            "__name__": TRANSFORM_FUNCTION,
            "__metaclass__": type,
            "_getattr_": safer_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": _inplacevar,
            "_apply_": _apply,
            "_print_": PrintCollector,
        }

        def call() -> Any:
            exec(byte_code, namespace)
            return _materialize(namespace[TRANSFORM_FUNCTION](input))

        return await self._run(call, "Data transformation")

    async def _run(self, func: Callable[[], Any], label: str) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_bounded(func, self.timeout, label)), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise SandboxExecutionError(f"{label} timed out after {self.timeout}s") from None
        except SandboxExecutionError:
            raise
        except Exception as e:
            logger.debug(f"{label} raised {e.__class__.__name__}: {e}")
            raise SandboxExecutionError(_error_message(e)) from e
