"""
Side-effect free expression tree for scoring formulas.

A formula is built once from these nodes and then either interpreted in
Python (:mod:`app.scoring.evaluator`) or compiled to a SQLAlchemy column
expression (:mod:`app.scoring.compiler`). Both evaluators follow SQL NULL
semantics, so a row scores the same whichever path computes it.

Usage:
    from app.scoring.expression import Case, Field, least

    risk = Field("risk")
    term = Case([(risk >= 8, -20.0), (risk >= 6, -10.0)], 0.0)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union


Scalar = Union[float, int, str, None]


class Expr:
    """Base node. Arithmetic and ordering operators build new nodes."""

    def __add__(self, other: Any) -> "BinOp":
        return BinOp("+", self, wrap(other))

    def __radd__(self, other: Any) -> "BinOp":
        return BinOp("+", wrap(other), self)

    def __sub__(self, other: Any) -> "BinOp":
        return BinOp("-", self, wrap(other))

    def __rsub__(self, other: Any) -> "BinOp":
        return BinOp("-", wrap(other), self)

    def __mul__(self, other: Any) -> "BinOp":
        return BinOp("*", self, wrap(other))

    def __rmul__(self, other: Any) -> "BinOp":
        return BinOp("*", wrap(other), self)

    def __truediv__(self, other: Any) -> "BinOp":
        return BinOp("/", self, wrap(other))

    def __neg__(self) -> "BinOp":
        return BinOp("-", Const(0.0), self)

    def __ge__(self, other: Any) -> "Compare":
        return Compare(">=", self, wrap(other))

    def __gt__(self, other: Any) -> "Compare":
        return Compare(">", self, wrap(other))

    def __le__(self, other: Any) -> "Compare":
        return Compare("<=", self, wrap(other))

    def __lt__(self, other: Any) -> "Compare":
        return Compare("<", self, wrap(other))

    def eq(self, other: Any) -> "Compare":
        return Compare("=", self, wrap(other))

    def ne(self, other: Any) -> "Compare":
        return Compare("!=", self, wrap(other))

    def is_null(self) -> "IsNull":
        return IsNull(self)

    def is_not_null(self) -> "Not":
        return Not(IsNull(self))


@dataclass(frozen=True, eq=False)
class Const(Expr):
    value: Scalar


@dataclass(frozen=True, eq=False)
class Field(Expr):
    """Named input. Resolved from the input mapping or a column mapping."""

    name: str


@dataclass(frozen=True, eq=False)
class BinOp(Expr):
    op: str  # + - * /
    left: Expr
    right: Expr


@dataclass(frozen=True, eq=False)
class Abs(Expr):
    operand: Expr


@dataclass(frozen=True, eq=False)
class Coalesce(Expr):
    args: tuple[Expr, ...]


@dataclass(frozen=True, eq=False)
class Compare(Expr):
    op: str  # = != < <= > >=
    left: Expr
    right: Expr


@dataclass(frozen=True, eq=False)
class And(Expr):
    args: tuple[Expr, ...]


@dataclass(frozen=True, eq=False)
class Or(Expr):
    args: tuple[Expr, ...]


@dataclass(frozen=True, eq=False)
class Not(Expr):
    operand: Expr


@dataclass(frozen=True, eq=False)
class IsNull(Expr):
    operand: Expr


@dataclass(frozen=True, eq=False)
class Contains(Expr):
    """Case-insensitive substring test."""

    operand: Expr
    needle: str


@dataclass(frozen=True, eq=False)
class TextEquals(Expr):
    """Case-insensitive text equality."""

    operand: Expr
    value: str


@dataclass(frozen=True, eq=False, init=False)
class Case(Expr):
    """First branch whose condition is true wins; NULL conditions do not match."""

    whens: tuple[tuple[Expr, Expr], ...]
    else_: Expr

    def __init__(self, whens: Iterable[tuple[Any, Any]], else_: Any = None):
        object.__setattr__(self, "whens", tuple((wrap(c), wrap(v)) for c, v in whens))
        object.__setattr__(self, "else_", wrap(else_))


def wrap(value: Any) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, bool):
        raise TypeError("Use a comparison instead of a boolean constant")
    return Const(value)


def all_of(*args: Any) -> And:
    return And(tuple(wrap(a) for a in args))


def any_of(*args: Any) -> Or:
    return Or(tuple(wrap(a) for a in args))


def coalesce(*args: Any) -> Coalesce:
    return Coalesce(tuple(wrap(a) for a in args))


def least(a: Any, b: Any) -> Case:
    a, b = wrap(a), wrap(b)
    return Case([(a <= b, a)], b)


def greatest(a: Any, b: Any) -> Case:
    a, b = wrap(a), wrap(b)
    return Case([(a >= b, a)], b)


def fields(expr: Expr) -> set[str]:
    """Names of every :class:`Field` referenced by ``expr``."""
    found: set[str] = set()
    _walk_fields(expr, found)
    return found


def _walk_fields(expr: Expr, found: set[str]) -> None:
    if isinstance(expr, Field):
        found.add(expr.name)
    elif isinstance(expr, (BinOp, Compare)):
        _walk_fields(expr.left, found)
        _walk_fields(expr.right, found)
    elif isinstance(expr, (Abs, Not, IsNull, Contains, TextEquals)):
        _walk_fields(expr.operand, found)
    elif isinstance(expr, (Coalesce, And, Or)):
        for arg in expr.args:
            _walk_fields(arg, found)
    elif isinstance(expr, Case):
        for cond, value in expr.whens:
            _walk_fields(cond, found)
            _walk_fields(value, found)
        _walk_fields(expr.else_, found)


def substitute(expr: Expr, replacements: dict[str, Expr]) -> Expr:
    """Replace named fields with sub-expressions (used to inline derived inputs)."""
    if isinstance(expr, Field):
        return replacements.get(expr.name, expr)
    if isinstance(expr, BinOp):
        return BinOp(expr.op, substitute(expr.left, replacements), substitute(expr.right, replacements))
    if isinstance(expr, Compare):
        return Compare(expr.op, substitute(expr.left, replacements), substitute(expr.right, replacements))
    if isinstance(expr, Abs):
        return Abs(substitute(expr.operand, replacements))
    if isinstance(expr, Not):
        return Not(substitute(expr.operand, replacements))
    if isinstance(expr, IsNull):
        return IsNull(substitute(expr.operand, replacements))
    if isinstance(expr, Contains):
        return Contains(substitute(expr.operand, replacements), expr.needle)
    if isinstance(expr, TextEquals):
        return TextEquals(substitute(expr.operand, replacements), expr.value)
    if isinstance(expr, Coalesce):
        return Coalesce(tuple(substitute(a, replacements) for a in expr.args))
    if isinstance(expr, And):
        return And(tuple(substitute(a, replacements) for a in expr.args))
    if isinstance(expr, Or):
        return Or(tuple(substitute(a, replacements) for a in expr.args))
    if isinstance(expr, Case):
        return Case(
            [(substitute(c, replacements), substitute(v, replacements)) for c, v in expr.whens],
            substitute(expr.else_, replacements),
        )
    return expr
