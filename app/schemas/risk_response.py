"""
Risk assessment result.

Produced once per assess_risk() call and attached to the loan application.
The lending orchestrator only needs: approved, risk_score, max_amount.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class FactorScore(BaseModel):
    """One banded penalty inside a risk category."""
    model_config = ConfigDict(frozen=True)

    factor_name: str
    category: str
    raw_value: str
    bin_label: str
    penalty: float


class RiskBreakdown(BaseModel):
    """Per-category sub-scores, each clamped to 0-100."""
    model_config = ConfigDict(frozen=True)

    credit_risk: float
    market_risk: float
    liquidity_risk: float
    operational_risk: float


class RiskAssessmentResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    # ── Primary outputs ──
    risk_score: float = Field(description="Composite 0-100, higher = riskier")
    risk_level: RiskLevel
    approved: bool

    # ── Pricing / sizing ──
    max_amount: float
    recommended_interest_rate: float
    required_collateral_ratio: float
    confidence: float = Field(description="0.5-1.0, grows with data completeness")

    # ── Breakdown ──
    breakdown: RiskBreakdown
    factor_scores: list[FactorScore] = []
    recommendations: list[str] = []
