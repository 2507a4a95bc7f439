"""The compiled SQL verdict must agree with the scalar interpreter."""

from __future__ import annotations

import pytest
from sqlalchemy import Double, String, cast, literal, null, select

from app.scoring import compile_expr, compute_verdict, ranking_expressions
from app.scoring.expression import fields


TEXT_FIELDS = {"consensus", "news_sentiment"}

CASES = {
    "empty": {},
    "quality": {
        "risk": 2.0, "overall_score": 8.5, "base_price": 140.0, "bear_price": 90.0, "pe_ratio": 12.0,
        "consensus": "Buy", "revenue_ttm": 1e9, "price": 100.0, "high_52w": 150.0, "low_52w": 80.0,
    },
    "veto": {
        "risk": 9.5, "overall_score": 3.0, "stored_upside": 5.0, "consensus": "Sell",
        "revenue_ttm": 0.0, "price": 100.0, "high_52w": 101.0, "low_52w": 50.0,
    },
    "speculative": {"risk": 8.5, "overall_score": 8.0, "base_price": 22.0, "price": 10.0},
    "news": {
        "risk": 5.0, "news_sentiment": "bearish", "news_impact": 8.5, "stored_upside": 25.0,
        "revenue_ttm": 10.0, "price": 30.0, "high_52w": 30.5, "low_52w": 12.0,
    },
    "falling_knife": {
        "risk": 7.0, "bear_price": 0.5, "consensus": "Strong Sell", "price": 100.0,
        "low_52w": 99.0, "revenue_ttm": 5.0,
    },
    "zero_price": {"risk": 4.0, "base_price": 10.0, "bear_price": 5.0, "price": 0.0, "stored_upside": 15.0},
}


def _raw_fields() -> list[str]:
    names: set[str] = set()
    for expr in ranking_expressions().values():
        names |= fields(expr)
    return sorted(names)


def _inputs_select(inputs: dict):
    columns = []
    for name in _raw_fields():
        type_ = String() if name in TEXT_FIELDS else Double()
        value = inputs.get(name)
        column = literal(value, type_) if value is not None else cast(null(), type_)
        columns.append(column.label(name))
    return select(*columns).subquery("inputs")


class TestCompiledVerdict:
    """Compile ranking expressions and compare against compute_verdict()."""

    def test_raw_fields_exclude_derived_inputs(self):
        names = _raw_fields()
        assert "upside" not in names
        assert "downside" not in names
        assert {"base_price", "bear_price", "stored_upside", "price"} <= set(names)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("case", sorted(CASES))
    async def test_sql_matches_scalar(self, db, case):
        inputs = CASES[case]
        sub = _inputs_select(inputs)
        stmt = select(
            *(compile_expr(expr, sub.c).label(name) for name, expr in ranking_expressions().items())
        )

        async with db.connect() as conn:
            row = (await conn.execute(stmt)).mappings().one()

        expected = compute_verdict(inputs)
        assert row["score"] == pytest.approx(expected.score)
        assert row["rating"] == expected.rating
        assert row["variant"] == expected.variant
        if expected.upside is None:
            assert row["upside"] is None
        else:
            assert row["upside"] == pytest.approx(expected.upside)
        assert row["downside"] == pytest.approx(expected.downside)
