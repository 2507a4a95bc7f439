"""Compile scoring expressions into SQLAlchemy column expressions.

The output is a plain ``ColumnElement`` that can be used in ``select()``,
``where()`` and ``order_by()``. Numeric constants are bound as double
precision literals so arithmetic happens in floating point on every backend.
"""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import Double, String, and_, case, func, literal, not_, null, or_
from sqlalchemy.sql.elements import ColumnElement

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


def _literal(value: Any) -> ColumnElement:
    if value is None:
        return null()
    if isinstance(value, str):
        return literal(value, String())
    return literal(float(value), Double())


def compile_expr(expr: Expr, columns: Mapping[str, Any]) -> ColumnElement:
    """Translate ``expr`` using ``columns`` to resolve field names.

    ``columns`` maps field names to SQLAlchemy column expressions, typically
    labelled columns of a subquery. Unknown fields raise ``KeyError``.
    """
    if isinstance(expr, Const):
        return _literal(expr.value)

    if isinstance(expr, Field):
        return columns[expr.name]

    if isinstance(expr, BinOp):
        left = compile_expr(expr.left, columns)
        right = compile_expr(expr.right, columns)
        if expr.op == "+":
            return left + right
        if expr.op == "-":
            return left - right
        if expr.op == "*":
            return left * right
        if expr.op == "/":
            # x / NULLIF(y, 0) keeps division by zero NULL on every backend
            return left / func.nullif(right, 0.0)
        raise ValueError(f"Unknown operator {expr.op!r}")

    if isinstance(expr, Abs):
        return func.abs(compile_expr(expr.operand, columns))

    if isinstance(expr, Coalesce):
        return func.coalesce(*(compile_expr(a, columns) for a in expr.args))

    if isinstance(expr, Compare):
        left = compile_expr(expr.left, columns)
        right = compile_expr(expr.right, columns)
        if expr.op == "=":
            return left == right
        if expr.op == "!=":
            return left != right
        if expr.op == "<":
            return left < right
        if expr.op == "<=":
            return left <= right
        if expr.op == ">":
            return left > right
        if expr.op == ">=":
            return left >= right
        raise ValueError(f"Unknown comparison {expr.op!r}")

    if isinstance(expr, And):
        return and_(*(compile_expr(a, columns) for a in expr.args))

    if isinstance(expr, Or):
        return or_(*(compile_expr(a, columns) for a in expr.args))

    if isinstance(expr, Not):
        return not_(compile_expr(expr.operand, columns))

    if isinstance(expr, IsNull):
        return compile_expr(expr.operand, columns).is_(None)

    if isinstance(expr, Contains):
        operand = func.lower(compile_expr(expr.operand, columns))
        return operand.contains(expr.needle.lower(), autoescape=True)

    if isinstance(expr, TextEquals):
        return func.lower(compile_expr(expr.operand, columns)) == expr.value.lower()

    if isinstance(expr, Case):
        whens = [
            (compile_expr(cond, columns), compile_expr(value, columns))
            for cond, value in expr.whens
        ]
        return case(*whens, else_=compile_expr(expr.else_, columns))

    raise TypeError(f"Cannot compile node {type(expr).__name__}")
