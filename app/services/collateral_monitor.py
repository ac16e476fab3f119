"""
Collateral Monitor

    ratio              = collateral_value / remaining_debt
    needs_liquidation  = ratio < required_ratio
    liquidation_amount = debt - collateral_value / required_ratio   (only when flagged)

The amount is the debt that must be retired for the remaining position to sit
exactly at the required ratio again. No outstanding debt means the loan is
healthy by definition (ratio = inf).

Pure computation: the caller persists the observed ratio onto the loan.
"""
from __future__ import annotations

import math

from app.schemas.lending import ActiveLoan
from app.schemas.liquidation import LiquidationCheck
from app.services.interfaces import CollateralValueProvider

DEFAULT_REQUIRED_RATIO = 1.2


def evaluate_position(
    loan_id: str,
    collateral_value: float,
    debt_amount: float,
    required_ratio: float = DEFAULT_REQUIRED_RATIO,
) -> LiquidationCheck:
    if debt_amount <= 0:
        return LiquidationCheck(
            loan_id=loan_id,
            current_collateral_ratio=math.inf,
            required_collateral_ratio=required_ratio,
            needs_liquidation=False,
            liquidation_amount=0.0,
            collateral_value=collateral_value,
            debt_amount=debt_amount,
        )

    ratio = collateral_value / debt_amount
    needs_liquidation = ratio < required_ratio
    amount = max(0.0, debt_amount - collateral_value / required_ratio) if needs_liquidation else 0.0

    return LiquidationCheck(
        loan_id=loan_id,
        current_collateral_ratio=ratio,
        required_collateral_ratio=required_ratio,
        needs_liquidation=needs_liquidation,
        liquidation_amount=amount,
        collateral_value=collateral_value,
        debt_amount=debt_amount,
    )


def check_loan(
    loan: ActiveLoan,
    collateral_value_provider: CollateralValueProvider,
    required_ratio: float = DEFAULT_REQUIRED_RATIO,
) -> LiquidationCheck:
    """Fetch the collateral quote and evaluate. PriceFeedError propagates."""
    collateral_value = collateral_value_provider.get_collateral_value(loan)
    return evaluate_position(loan.id, collateral_value, loan.remaining_amount, required_ratio)
