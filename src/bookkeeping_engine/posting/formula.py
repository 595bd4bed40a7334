"""Posting formulas as data.

A formula is a small JSON tree, parsed into frozen nodes and evaluated by a
tree walker over Decimal. Nothing tenant-supplied is ever executed.

    {"const": "1.077"}
    {"field": "amount_total"}
    {"field": "fee_amount", "default": "0"}
    {"op": "sub", "args": [{"field": "amount_total"}, {"field": "fee_amount", "default": "0"}]}

Operators: add, sub, mul, div, min, max, neg, abs, round (to cents, half up).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, DivisionByZero, InvalidOperation
from typing import Any, Union

from bookkeeping_engine.errors import FormulaError
from bookkeeping_engine.money import round_to_cents

MAX_DEPTH = 16

# op -> (min args, max args or None for unbounded)
_ARITY: dict[str, tuple[int, int | None]] = {
    "add": (2, None),
    "sub": (2, 2),
    "mul": (2, None),
    "div": (2, 2),
    "min": (1, None),
    "max": (1, None),
    "neg": (1, 1),
    "abs": (1, 1),
    "round": (1, 1),
}


@dataclass(frozen=True)
class Const:
    value: Decimal


@dataclass(frozen=True)
class Field:
    name: str
    default: Decimal | None = None


@dataclass(frozen=True)
class Op:
    op: str
    args: tuple[Formula, ...]


Formula = Union[Const, Field, Op]


def parse_number(raw: Any, where: str) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (int, str, float)):
        raise FormulaError(f"{where}: expected a number, got {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise FormulaError(f"{where}: invalid number {raw!r}") from exc
    if not value.is_finite():
        raise FormulaError(f"{where}: number must be finite")
    return value


def parse_formula(data: Any, _depth: int = 0) -> Formula:
    """Parse a JSON formula tree, raising FormulaError on anything unexpected."""
    if _depth > MAX_DEPTH:
        raise FormulaError(f"Formula nested deeper than {MAX_DEPTH}")
    if not isinstance(data, Mapping):
        raise FormulaError(f"Formula node must be an object, got {type(data).__name__}")

    keys = set(data)
    if keys == {"const"}:
        return Const(parse_number(data["const"], "const"))

    if keys in ({"field"}, {"field", "default"}):
        name = data["field"]
        if not isinstance(name, str) or not name:
            raise FormulaError("field must be a non-empty string")
        default = data.get("default")
        return Field(name, None if default is None else parse_number(default, f"{name} default"))

    if keys == {"op", "args"}:
        op = data["op"]
        if op not in _ARITY:
            raise FormulaError(f"Unknown operator {op!r}")
        raw_args = data["args"]
        if not isinstance(raw_args, list):
            raise FormulaError(f"{op}: args must be a list")
        low, high = _ARITY[op]
        if len(raw_args) < low or (high is not None and len(raw_args) > high):
            raise FormulaError(f"{op}: wrong number of arguments ({len(raw_args)})")
        return Op(op, tuple(parse_formula(arg, _depth + 1) for arg in raw_args))

    raise FormulaError(f"Unrecognised formula node with keys {sorted(keys)}")


def referenced_fields(node: Formula) -> set[str]:
    """All payload fields a formula reads."""
    if isinstance(node, Field):
        return {node.name}
    if isinstance(node, Op):
        fields: set[str] = set()
        for arg in node.args:
            fields |= referenced_fields(arg)
        return fields
    return set()


def _field_value(node: Field, payload: Mapping[str, Any]) -> Decimal:
    raw = payload.get(node.name)
    if raw is None:
        if node.default is None:
            raise FormulaError(f"Payload field {node.name!r} is missing")
        return node.default
    return parse_number(raw, f"payload field {node.name!r}")


def evaluate(
    node: Formula,
    payload: Mapping[str, Any],
    allowed: frozenset[str] | None = None,
) -> Decimal:
    """Evaluate a parsed formula against an event payload.

    Args:
        node: Parsed formula
        payload: Event payload (numbers may be strings, ints or floats)
        allowed: Whitelisted field names; None disables the check

    Returns:
        Unrounded Decimal result
    """
    if isinstance(node, Const):
        return node.value

    if isinstance(node, Field):
        if allowed is not None and node.name not in allowed:
            raise FormulaError(f"Field {node.name!r} is not allowed for this event")
        return _field_value(node, payload)

    values = [evaluate(arg, payload, allowed) for arg in node.args]
    try:
        if node.op == "add":
            return sum(values[1:], values[0])
        if node.op == "sub":
            return values[0] - values[1]
        if node.op == "mul":
            result = values[0]
            for value in values[1:]:
                result *= value
            return result
        if node.op == "div":
            if values[1] == 0:
                raise FormulaError("Division by zero")
            return values[0] / values[1]
        if node.op == "min":
            return min(values)
        if node.op == "max":
            return max(values)
        if node.op == "neg":
            return -values[0]
        if node.op == "abs":
            return abs(values[0])
        if node.op == "round":
            return round_to_cents(values[0])
    except (InvalidOperation, DivisionByZero) as exc:
        raise FormulaError(f"{node.op}: arithmetic error") from exc
    raise FormulaError(f"Unknown operator {node.op!r}")
