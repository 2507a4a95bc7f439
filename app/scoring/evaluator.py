"""Scalar interpreter for scoring expressions (SQL NULL semantics)."""

from __future__ import annotations

import operator
from typing import Any, Mapping

from .expression import (
    Abs,
    And,
    BinOp,
    Case,
    Coalesce,
    Compare,
    Const,
    Contains,
    Expr,
    Field,
    IsNull,
    Not,
    Or,
    TextEquals,
)


_COMPARE = {
    "=": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def _as_value(value: Any) -> Any:
    """Numbers become floats (double precision, like the store); text stays text."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return str(value)


def evaluate(expr: Expr, inputs: Mapping[str, Any]) -> Any:
    """Evaluate ``expr`` against ``inputs``.

    Missing inputs are NULL. Arithmetic with NULL is NULL, comparisons with
    NULL are unknown (``None``), and AND/OR use three-valued logic.
    """
    if isinstance(expr, Const):
        return _as_value(expr.value)

    if isinstance(expr, Field):
        return _as_value(inputs.get(expr.name))

    if isinstance(expr, BinOp):
        left = evaluate(expr.left, inputs)
        right = evaluate(expr.right, inputs)
        if left is None or right is None:
            return None
        if expr.op == "+":
            return left + right
        if expr.op == "-":
            return left - right
        if expr.op == "*":
            return left * right
        if expr.op == "/":
            return None if right == 0 else left / right
        raise ValueError(f"Unknown operator {expr.op!r}")

    if isinstance(expr, Abs):
        value = evaluate(expr.operand, inputs)
        return None if value is None else abs(value)

    if isinstance(expr, Coalesce):
        for arg in expr.args:
            value = evaluate(arg, inputs)
            if value is not None:
                return value
        return None

    if isinstance(expr, Compare):
        left = evaluate(expr.left, inputs)
        right = evaluate(expr.right, inputs)
        if left is None or right is None:
            return None
        return _COMPARE[expr.op](left, right)

    if isinstance(expr, And):
        unknown = False
        for arg in expr.args:
            value = evaluate(arg, inputs)
            if value is False:
                return False
            if value is None:
                unknown = True
        return None if unknown else True

    if isinstance(expr, Or):
        unknown = False
        for arg in expr.args:
            value = evaluate(arg, inputs)
            if value is True:
                return True
            if value is None:
                unknown = True
        return None if unknown else False

    if isinstance(expr, Not):
        value = evaluate(expr.operand, inputs)
        return None if value is None else not value

    if isinstance(expr, IsNull):
        return evaluate(expr.operand, inputs) is None

    if isinstance(expr, Contains):
        value = evaluate(expr.operand, inputs)
        if value is None:
            return None
        return expr.needle.lower() in str(value).lower()

    if isinstance(expr, TextEquals):
        value = evaluate(expr.operand, inputs)
        if value is None:
            return None
        return str(value).lower() == expr.value.lower()

    if isinstance(expr, Case):
        for cond, value in expr.whens:
            if evaluate(cond, inputs) is True:
                return evaluate(value, inputs)
        return evaluate(expr.else_, inputs)

    raise TypeError(f"Cannot evaluate node {type(expr).__name__}")
