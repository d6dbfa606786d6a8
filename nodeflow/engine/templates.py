"""
Template interpolation for node configuration.

Resolves ``{{input}}`` and ``{{input.path.to.field}}`` tokens in string
configuration values against the value a node received from upstream.
Unresolvable paths are left in place untouched so they can be treated
literally or re-interpolated later.
"""

import json
import re
from typing import Any, Dict, Iterable, Mapping

TOKEN_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
INPUT_PREFIX = "input."


def to_template_string(value: Any) -> str:
    """Render a resolved value the way it appears inside a template."""
    if value is None:
        return ""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_path(value: Any, path: str) -> Any:
    """
    Walk ``value`` along a dot-separated path.

    Raises KeyError when a step cannot be followed. List items are addressed
    by their numeric index.
    """
    current = value
    for field in path.split("."):
        if isinstance(current, Mapping) and field in current:
            current = current[field]
        elif isinstance(current, list) and field.isdigit() and int(field) < len(current):
            current = current[int(field)]
        else:
            raise KeyError(field)
    return current


def interpolate(template: str, input: Any) -> str:
    """Replace every ``{{input...}}`` token in ``template``."""

    def replace(match: "re.Match[str]") -> str:
        path = match.group(1).strip()

        if path == "input":
            return to_template_string(input)

        if path.startswith(INPUT_PREFIX):
            try:
                resolved = resolve_path(input, path[len(INPUT_PREFIX):])
            except KeyError:
                return match.group(0)
            if resolved is None:
                return match.group(0)
            return to_template_string(resolved)

        return match.group(0)

    return TOKEN_PATTERN.sub(replace, template)


def interpolate_fields(
    config: Mapping[str, Any], fields: Iterable[str], input: Any
) -> Dict[str, Any]:
    """Return a copy of ``config`` with the named string fields interpolated."""
    resolved = dict(config)
    for name in fields:
        value = resolved.get(name)
        if isinstance(value, str):
            resolved[name] = interpolate(value, input)
    return resolved
