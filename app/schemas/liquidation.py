"""
Liquidation monitoring outputs.

LiquidationCheck is ephemeral — recomputed every cycle, never stored.
Only the resulting liquidation (loan state + monitoring event) persists.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class LiquidationCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    loan_id: str
    current_collateral_ratio: float  # inf when there is no outstanding debt
    required_collateral_ratio: float
    needs_liquidation: bool
    liquidation_amount: float
    collateral_value: float
    debt_amount: float


class LiquidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    loan_id: str
    liquidated_amount: float
    remaining_debt: float
    partial: bool = False
    transaction_ref: Optional[str] = None
    error: Optional[str] = None


class LiquidationStatus(BaseModel):
    """Portfolio-level view over all ACTIVE loans."""
    total_active_loans: int
    at_risk_loans: int
    critical_loans: int
    checks: list[LiquidationCheck] = []
