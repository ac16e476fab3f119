"""
Risk Scoring Engine

Orchestrates:
  1. Banded factor penalties, grouped into four categories
  2. Category sub-scores (clamped 0-100)
  3. Weighted composite score
  4. Risk level + approval (hard rules)
  5. Pricing / sizing: max amount, recommended rate, required collateral
  6. Confidence + recommendations

Pure and deterministic: same RiskFactors in, same result out. No I/O.
"""
from __future__ import annotations

import structlog

from app.schemas.risk_request import RiskFactors
from app.schemas.risk_response import (
    FactorScore,
    RiskAssessmentResult,
    RiskBreakdown,
    RiskLevel,
)
from app.scoring import factors
from app.scoring.factors import FactorResult

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════════
# Category weights (must sum to 1.0)
# ═══════════════════════════════════════════════════════════════
CATEGORY_WEIGHTS: dict[str, float] = {
    "credit": 0.35,
    "market": 0.25,
    "liquidity": 0.25,
    "operational": 0.15,
}
assert abs(sum(CATEGORY_WEIGHTS.values()) - 1.0) < 1e-9, "Weights must sum to 1.0"

CATEGORY_CAP = 100.0


# ═══════════════════════════════════════════════════════════════
# Risk level bands
#   score < 25  → LOW
#   score < 50  → MEDIUM
#   score < 75  → HIGH
#   otherwise   → CRITICAL
# ═══════════════════════════════════════════════════════════════
RISK_LEVEL_THRESHOLDS = [
    (25.0, RiskLevel.LOW),
    (50.0, RiskLevel.MEDIUM),
    (75.0, RiskLevel.HIGH),
]

# ── Approval hard rules ──
MAX_APPROVABLE_SCORE = 70.0
MIN_CREDIT_SCORE = 300
MAX_DEFAULT_COUNT = 2
MIN_COLLATERAL_RATIO = 1.1

# ── Sizing / pricing ──
MIN_RISK_MULTIPLIER = 0.1
HISTORY_CAP_MULTIPLE = 2.0
COLLATERAL_CAP_DIVISOR = 1.5
MAX_LOAN_AMOUNT = 2_000_000.0
MAX_RISK_PREMIUM = 0.10
MAX_INTEREST_RATE = 0.50
BASE_COLLATERAL_RATIO = 1.5
MAX_COLLATERAL_ADJUSTMENT = 1.0
MAX_COLLATERAL_RATIO = 5.0


def assess_risk(request: RiskFactors) -> RiskAssessmentResult:
    """
    Main scoring entry point.
    """
    history = request.borrower_history
    market = request.market_conditions

    # ── Step 1: Banded factors per category ──
    by_category: dict[str, list[FactorResult]] = {
        "credit": [
            factors.score_credit_score(request.credit_score),
            factors.score_default_count(history.default_count),
            factors.score_payment_time(history.avg_payment_time_days),
            factors.score_income_stability(request.income_stability),
        ],
        "market": [
            factors.score_volatility(market.volatility),
            factors.score_price_deviation(market.asset_price),
            factors.score_rate_spread(request.interest_rate, market.lending_rate),
        ],
        "liquidity": [
            factors.score_amount_ratio(request.loan_amount, history.total_borrowed),
            factors.score_collateral_ratio(request.collateral_ratio),
            factors.score_duration(request.duration_days),
        ],
        "operational": [
            factors.score_borrower_age(request.borrower_age),
            factors.score_loan_purpose(request.loan_purpose),
            factors.score_amount_concentration(request.loan_amount),
        ],
    }

    # ── Step 2: Category sub-scores ──
    sub_scores: dict[str, float] = {}
    factor_scores: list[FactorScore] = []
    for category, results in by_category.items():
        sub_scores[category] = _clamp(sum(r.penalty for r in results))
        for r in results:
            factor_scores.append(
                FactorScore(
                    factor_name=r.factor_name,
                    category=category,
                    raw_value=r.raw_value,
                    bin_label=r.bin_label,
                    penalty=r.penalty,
                )
            )

    # ── Step 3: Composite score ──
    score = sum(sub_scores[c] * w for c, w in CATEGORY_WEIGHTS.items())
    score = round(_clamp(score), 2)

    # ── Step 4: Level + approval ──
    level = determine_risk_level(score)
    approved = _should_approve(score, request)

    result = RiskAssessmentResult(
        risk_score=score,
        risk_level=level,
        approved=approved,
        max_amount=_max_amount(score, request),
        recommended_interest_rate=min(market.lending_rate + (score / 100) * MAX_RISK_PREMIUM, MAX_INTEREST_RATE),
        required_collateral_ratio=min(
            BASE_COLLATERAL_RATIO + (score / 100) * MAX_COLLATERAL_ADJUSTMENT,
            MAX_COLLATERAL_RATIO,
        ),
        confidence=_confidence(request),
        breakdown=RiskBreakdown(
            credit_risk=sub_scores["credit"],
            market_risk=sub_scores["market"],
            liquidity_risk=sub_scores["liquidity"],
            operational_risk=sub_scores["operational"],
        ),
        factor_scores=factor_scores,
        recommendations=_recommendations(score, request),
    )

    logger.debug(
        "risk_assessment_complete",
        score=score,
        level=level.value,
        approved=approved,
    )
    return result


def determine_risk_level(score: float) -> RiskLevel:
    for threshold, level in RISK_LEVEL_THRESHOLDS:
        if score < threshold:
            return level
    return RiskLevel.CRITICAL


def _clamp(value: float) -> float:
    return max(0.0, min(value, CATEGORY_CAP))


# ═══════════════════════════════════════════════════════════════
# Approval: every rule must pass
# ═══════════════════════════════════════════════════════════════

def _should_approve(score: float, request: RiskFactors) -> bool:
    if score > MAX_APPROVABLE_SCORE:
        return False
    if request.credit_score < MIN_CREDIT_SCORE:
        return False
    if request.borrower_history.default_count > MAX_DEFAULT_COUNT:
        return False
    if request.collateral_ratio < MIN_COLLATERAL_RATIO:
        return False
    return True


# ═══════════════════════════════════════════════════════════════
# Sizing
# ═══════════════════════════════════════════════════════════════

def _max_amount(score: float, request: RiskFactors) -> float:
    """
    Smallest of four caps: risk-scaled request, 2x borrowing history,
    collateral coverage at 150%, and the platform hard cap.
    """
    amount = request.loan_amount
    risk_multiplier = max(MIN_RISK_MULTIPLIER, 1 - score / 100)
    history_cap = request.borrower_history.total_borrowed * HISTORY_CAP_MULTIPLE
    if request.collateral_ratio > 0:
        collateral_cap = amount * request.collateral_ratio / COLLATERAL_CAP_DIVISOR
    else:
        collateral_cap = amount

    return min(amount * risk_multiplier, history_cap, collateral_cap, MAX_LOAN_AMOUNT)


def _confidence(request: RiskFactors) -> float:
    confidence = 0.5
    if request.borrower_history.total_borrowed > 0:
        confidence += 0.2
    if request.credit_score > 0:
        confidence += 0.1
    if request.income_stability > 0:
        confidence += 0.1
    if request.borrower_age > 0:
        confidence += 0.1
    return round(min(confidence, 1.0), 2)


def _recommendations(score: float, request: RiskFactors) -> list[str]:
    checks = [
        (request.credit_score < 650, "Consider improving credit score before applying"),
        (request.collateral_ratio < 1.5, "Increase collateral ratio to reduce risk"),
        (request.borrower_history.default_count > 0, "Address previous defaults before applying"),
        (request.duration_days > 365, "Consider shorter loan duration to reduce risk"),
        (request.loan_amount > 500_000, "Consider splitting into smaller loans"),
        (score > 50, "Consider additional collateral or guarantor"),
    ]
    recommendations: list[str] = []
    for triggered, text in checks:
        if triggered and text not in recommendations:
            recommendations.append(text)
    return recommendations
