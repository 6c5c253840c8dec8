from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping

from nodeflow.errors import ExecutionError, ValidationError
from nodeflow.runtime.contracts import (
    SELECTED_BRANCH,
    InputPort,
    NodeContext,
    NodeExecutor,
    OutputPort,
)
from nodeflow.runtime.registry import register_node

UNARY_OPERATORS = {"is_empty", "is_not_empty"}
NUMERIC_OPERATORS = {"gt", "gte", "lt", "lte"}

_STRING_OPS: Dict[str, Callable[[str, str], bool]] = {
    "equals": lambda v, t: v == t,
    "not_equals": lambda v, t: v != t,
    "contains": lambda v, t: t in v,
    "not_contains": lambda v, t: t not in v,
    "starts_with": lambda v, t: v.startswith(t),
    "ends_with": lambda v, t: v.endswith(t),
}

_NUMERIC_OPS: Dict[str, Callable[[float, float], bool]] = {
    "gt": lambda v, t: v > t,
    "gte": lambda v, t: v >= t,
    "lt": lambda v, t: v < t,
    "lte": lambda v, t: v <= t,
}


def _as_number(value: Any, what: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ExecutionError(f"NOT_NUMERIC:{what}={value!r}") from None


def evaluate(operator: str, value: Any, target: Any, case_sensitive: bool = True) -> bool:
    if operator == "is_empty":
        return value is None or str(value).strip() == ""
    if operator == "is_not_empty":
        return not (value is None or str(value).strip() == "")
    if target is None:
        raise ExecutionError(f"MISSING_TARGET:{operator}")
    if operator in NUMERIC_OPERATORS:
        return _NUMERIC_OPS[operator](_as_number(value, "value"), _as_number(target, "target"))

    text, pattern = str(value), str(target)
    if operator == "regex":
        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            return re.search(pattern, text, flags) is not None
        except re.error as exc:
            raise ExecutionError(f"INVALID_REGEX:{exc}") from exc
    if not case_sensitive:
        text, pattern = text.lower(), pattern.lower()
    return _STRING_OPS[operator](text, pattern)


@register_node
class Conditional(NodeExecutor):
    """Route ``value`` to the ``true`` or ``false`` port.

    Only the selected port carries data; the scheduler skips whatever hangs
    exclusively off the other one.
    """

    type_tag = "Conditional"
    input_ports = (
        InputPort("value", description="Value under test"),
        InputPort("target", required=False, config_keys=("target",), description="Comparison target"),
    )
    output_ports = (
        OutputPort("true", "Value, when the condition holds"),
        OutputPort("false", "Value, when it does not"),
        OutputPort(SELECTED_BRANCH, "Name of the selected port"),
    )
    branch_ports = ("true", "false")

    def validate(self, config: Mapping[str, Any]) -> Dict[str, Any]:
        params = super().validate(config)
        if params["operator"] == "regex" and params.get("target") is not None:
            try:
                re.compile(params["target"])
            except re.error as exc:
                raise ValidationError(str(exc), code="INVALID_REGEX") from exc
        return params

    async def execute(self, ctx: NodeContext) -> Dict[str, Any]:
        value = ctx.inputs.get("value")
        target = ctx.value("target", "target")
        matched = evaluate(ctx.params["operator"], value, target, ctx.params["case_sensitive"])
        branch = "true" if matched else "false"
        ctx.logger(f"{ctx.params['operator']} -> {branch}")
        return {SELECTED_BRANCH: branch, branch: value}
