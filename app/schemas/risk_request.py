"""
Inbound payload for a risk assessment.

The scorer is stateless: everything it needs arrives in RiskFactors.
No numeric bounds are enforced here — the scoring functions treat zero and
negative values as legitimate (if alarming) inputs.
"""
from __future__ import annotations

from pydantic import BaseModel, Field


# ── Sub-models ──

class BorrowerHistory(BaseModel):
    """Track record aggregated by the user directory."""
    total_borrowed: float = 0.0
    total_lent: float = 0.0
    default_count: int = 0
    avg_payment_time_days: float = Field(0.0, description="Average days late per payment")


class MarketConditions(BaseModel):
    """Snapshot of the collateral asset market at assessment time."""
    asset_price: float = Field(100.0, description="Collateral asset price, $100 baseline")
    volatility: float = Field(0.0, description="0-1 volatility index")
    lending_rate: float = Field(0.0, description="Prevailing market lending rate, e.g. 0.06")


# ── Top-level request ──

class RiskFactors(BaseModel):
    """Everything the scorer looks at for one loan application."""
    credit_score: float = Field(description="Bureau score, 0-850+")
    loan_amount: float
    interest_rate: float = Field(description="Requested annual rate, e.g. 0.08")
    duration_days: int
    collateral_ratio: float = Field(description="Collateral value / loan amount")
    borrower_history: BorrowerHistory = Field(default_factory=BorrowerHistory)
    market_conditions: MarketConditions = Field(default_factory=MarketConditions)
    loan_purpose: str = ""
    borrower_age: float = 0.0
    income_stability: float = Field(0.0, description="0-1, higher = steadier income")
