"""Scoring formulas shared by scalar evaluation and SQL ranking."""

from .compiler import compile_expr
from .evaluator import evaluate
from .verdict import (
    RATINGS,
    VerdictResult,
    compute_verdict,
    derive_upside_downside,
    ranking_expressions,
    score_verdict,
)

__all__ = [
    "RATINGS",
    "VerdictResult",
    "compile_expr",
    "compute_verdict",
    "derive_upside_downside",
    "evaluate",
    "ranking_expressions",
    "score_verdict",
]
