"""
Verdict scoring - composite weighted score and rating tier.

The formula is defined once as an expression tree. ``score_verdict`` runs it
in Python for a single ticker; the analyzer compiles the very same trees to
SQL (see :func:`ranking_expressions`) so ranking, filtering and per-ticker
display can never disagree.

Inputs (all optional, NULL-safe):
    risk            financial risk 0-10
    upside          upside in percent (derived from scenarios when available)
    downside        bear-case downside in percent (negative)
    overall_score   research overall score 0-10
    pe_ratio        trailing P/E
    consensus       analyst consensus text ("Strong Buy", "Sell", ...)
    news_sentiment  BULLISH / BEARISH / NEUTRAL
    news_impact     news impact score 0-10
    revenue_ttm     trailing twelve month revenue
    price           current price
    high_52w        52-week high
    low_52w         52-week low

Derived-input fields used by :data:`UPSIDE` / :data:`DOWNSIDE`:
    base_price, bear_price (scenario mid prices), stored_upside
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .evaluator import evaluate
from .expression import (
    Abs,
    Case,
    Contains,
    Expr,
    Field,
    TextEquals,
    all_of,
    any_of,
    coalesce,
    least,
    substitute,
)


# =============================================================================
# Weights and bands (empirically tuned, keep in sync with product copy)
# =============================================================================

BASE_SCORE = 50.0

UPSIDE_CAP = 100.0
UPSIDE_WEIGHT = 0.4
DOWNSIDE_WEIGHT = 0.8
DOWNSIDE_CAP = 40.0

RISK_HIGH = 8.0
RISK_ELEVATED = 6.0
RISK_LOW = 3.0
RISK_HIGH_PENALTY = -20.0
RISK_ELEVATED_PENALTY = -10.0
RISK_LOW_BONUS = 5.0

# (fraction of 52-week high, adjustment), checked top-down
ATH_BANDS = ((0.98, -20.0), (0.90, -10.0), (0.80, -5.0))
# (multiple of 52-week low, adjustment), checked top-down
DIP_BANDS = ((1.05, 10.0), (1.25, 5.0))
FALLING_KNIFE_DOWNSIDE = -99.0

NO_REVENUE_PENALTY = -5.0

OVERALL_BANDS = ((8.0, 20.0), (6.0, 10.0))
OVERALL_WEAK = 4.0
OVERALL_WEAK_PENALTY = -10.0

CONSENSUS_BANDS = (("strong buy", 10.0), ("buy", 5.0), ("sell", -10.0))

NEWS_HIGH_IMPACT = 8.0
NEWS_MEDIUM_IMPACT = 5.0
NEWS_HIGH_WEIGHT = 15.0
NEWS_MEDIUM_WEIGHT = 5.0

PE_BANDS = ((10.0, 20.0), (15.0, 15.0), (25.0, 5.0))

VETO_RISK = 9.0
VETO_SCORE = 70.0
SPECULATIVE_RISK = 8.0
SPECULATIVE_UPSIDE = 100.0
SPECULATIVE_OVERALL = 7.5

# (min score, rating, variant), checked top-down
RATING_TIERS = (
    (105.0, "No Brainer", "legendary"),
    (80.0, "Strong Buy", "strongBuy"),
    (65.0, "Buy", "buy"),
    (45.0, "Hold", "hold"),
)
FALLBACK_RATING = ("Sell", "sell")
SPECULATIVE_RATING = ("Speculative Buy", "speculativeBuy")

BEAR_FALLBACK_DOWNSIDE = -100.0
RISK_DOWNSIDE_MULTIPLIER = 5.0


# =============================================================================
# Inputs
# =============================================================================

RISK = Field("risk")
UPSIDE_IN = Field("upside")
DOWNSIDE_IN = Field("downside")
OVERALL = Field("overall_score")
PE = Field("pe_ratio")
CONSENSUS = Field("consensus")
NEWS_SENTIMENT = Field("news_sentiment")
NEWS_IMPACT = Field("news_impact")
REVENUE = Field("revenue_ttm")
PRICE = Field("price")
HIGH_52W = Field("high_52w")
LOW_52W = Field("low_52w")

BASE_PRICE = Field("base_price")
BEAR_PRICE = Field("bear_price")
STORED_UPSIDE = Field("stored_upside")

INPUT_FIELDS = (
    "risk", "upside", "downside", "overall_score", "pe_ratio", "consensus",
    "news_sentiment", "news_impact", "revenue_ttm", "price", "high_52w", "low_52w",
)


# =============================================================================
# Derived upside / downside
# =============================================================================

_has_price = PRICE > 0

UPSIDE: Expr = Case(
    [(all_of(BASE_PRICE.is_not_null(), _has_price), (BASE_PRICE - PRICE) / PRICE * 100.0)],
    STORED_UPSIDE,
)

DOWNSIDE: Expr = Case(
    [
        (all_of(BEAR_PRICE.is_not_null(), _has_price), (BEAR_PRICE - PRICE) / PRICE * 100.0),
        (RISK >= RISK_HIGH, BEAR_FALLBACK_DOWNSIDE),
    ],
    -(coalesce(RISK, 0.0) * RISK_DOWNSIDE_MULTIPLIER),
)


# =============================================================================
# Score terms
# =============================================================================

_u = coalesce(UPSIDE_IN, 0.0)
_d = coalesce(DOWNSIDE_IN, 0.0)


def _upside_term() -> Expr:
    return Case([(_u > 0, least(_u, UPSIDE_CAP) * UPSIDE_WEIGHT)], 0.0)


def _downside_penalty() -> Expr:
    return least(Abs(_d) * DOWNSIDE_WEIGHT, DOWNSIDE_CAP)


def _risk_term() -> Expr:
    return Case(
        [
            (RISK >= RISK_HIGH, RISK_HIGH_PENALTY),
            (RISK >= RISK_ELEVATED, RISK_ELEVATED_PENALTY),
            (RISK <= RISK_LOW, RISK_LOW_BONUS),
        ],
        0.0,
    )


def _ath_term() -> Expr:
    valid = all_of(PRICE > 0, HIGH_52W > 0)
    return Case(
        [(all_of(valid, PRICE >= HIGH_52W * ratio), points) for ratio, points in ATH_BANDS],
        0.0,
    )


def _dip_term() -> Expr:
    valid = all_of(PRICE > 0, LOW_52W > 0)
    falling_knife = all_of(
        Contains(coalesce(CONSENSUS, ""), "sell"),
        _d <= FALLING_KNIFE_DOWNSIDE,
    )
    whens = [(falling_knife, 0.0)]
    whens += [(all_of(valid, PRICE <= LOW_52W * ratio), points) for ratio, points in DIP_BANDS]
    return Case(whens, 0.0)


def _revenue_term() -> Expr:
    return Case([(any_of(REVENUE.is_null(), REVENUE <= 0), NO_REVENUE_PENALTY)], 0.0)


def _overall_term() -> Expr:
    whens = [(OVERALL >= threshold, points) for threshold, points in OVERALL_BANDS]
    whens.append((all_of(OVERALL <= OVERALL_WEAK, OVERALL.ne(0.0)), OVERALL_WEAK_PENALTY))
    return Case(whens, 0.0)


def _consensus_term() -> Expr:
    return Case(
        [(Contains(CONSENSUS, needle), points) for needle, points in CONSENSUS_BANDS],
        0.0,
    )


def _news_term() -> Expr:
    bullish = TextEquals(NEWS_SENTIMENT, "BULLISH")
    bearish = TextEquals(NEWS_SENTIMENT, "BEARISH")
    return Case(
        [
            (all_of(NEWS_IMPACT >= NEWS_HIGH_IMPACT, bullish), NEWS_HIGH_WEIGHT),
            (all_of(NEWS_IMPACT >= NEWS_HIGH_IMPACT, bearish), -NEWS_HIGH_WEIGHT),
            (all_of(NEWS_IMPACT >= NEWS_MEDIUM_IMPACT, bullish), NEWS_MEDIUM_WEIGHT),
            (all_of(NEWS_IMPACT >= NEWS_MEDIUM_IMPACT, bearish), -NEWS_MEDIUM_WEIGHT),
        ],
        0.0,
    )


def _pe_term() -> Expr:
    # Only cheapness is rewarded; negative or missing P/E scores 0
    return Case(
        [(all_of(PE > 0, PE <= ceiling), points) for ceiling, points in PE_BANDS],
        0.0,
    )


SCORE: Expr = (
    BASE_SCORE
    + _upside_term()
    - _downside_penalty()
    + _risk_term()
    + _ath_term()
    + _dip_term()
    + _revenue_term()
    + _overall_term()
    + _consensus_term()
    + _news_term()
    + _pe_term()
)


# =============================================================================
# Rating tiers
# =============================================================================

_veto = all_of(RISK >= VETO_RISK, SCORE < VETO_SCORE)
_speculative = all_of(
    RISK >= SPECULATIVE_RISK,
    any_of(_u >= SPECULATIVE_UPSIDE, OVERALL >= SPECULATIVE_OVERALL),
)


def _tier_case(index: int) -> Expr:
    """Rating (index 0) or variant (index 1) as one CASE expression."""
    whens = [
        (_veto, FALLBACK_RATING[index]),
        (_speculative, SPECULATIVE_RATING[index]),
    ]
    whens += [(SCORE >= threshold, tier[index]) for threshold, *tier in RATING_TIERS]
    return Case(whens, FALLBACK_RATING[index])


RATING: Expr = _tier_case(0)
VARIANT: Expr = _tier_case(1)

RATINGS = tuple(tier[1] for tier in RATING_TIERS) + (SPECULATIVE_RATING[0], FALLBACK_RATING[0])


# =============================================================================
# Public API
# =============================================================================


@dataclass(frozen=True)
class VerdictResult:
    score: float
    rating: str
    variant: str
    upside: float | None = None
    downside: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "rating": self.rating,
            "variant": self.variant,
            "upside": self.upside,
            "downside": self.downside,
        }


def derive_upside_downside(inputs: Mapping[str, Any]) -> tuple[float | None, float | None]:
    """Scenario-based upside/downside from base/bear prices, price and risk."""
    return evaluate(UPSIDE, inputs), evaluate(DOWNSIDE, inputs)


def score_verdict(inputs: Mapping[str, Any]) -> VerdictResult:
    """Score already-resolved inputs (``upside``/``downside`` given directly)."""
    return VerdictResult(
        score=evaluate(SCORE, inputs),
        rating=evaluate(RATING, inputs),
        variant=evaluate(VARIANT, inputs),
        upside=evaluate(UPSIDE_IN, inputs),
        downside=evaluate(DOWNSIDE_IN, inputs),
    )


def compute_verdict(inputs: Mapping[str, Any]) -> VerdictResult:
    """Derive upside/downside from scenario inputs, then score."""
    upside, downside = derive_upside_downside(inputs)
    resolved = dict(inputs)
    resolved["upside"] = upside
    resolved["downside"] = downside
    return score_verdict(resolved)


def ranking_expressions() -> dict[str, Expr]:
    """Score, rating, variant, upside and downside over raw (underived) inputs.

    Upside/downside are inlined from the scenario formulas so a query only
    needs to expose the raw columns.
    """
    derived = {"upside": UPSIDE, "downside": DOWNSIDE}
    return {
        "score": substitute(SCORE, derived),
        "rating": substitute(RATING, derived),
        "variant": substitute(VARIANT, derived),
        "upside": UPSIDE,
        "downside": DOWNSIDE,
    }
