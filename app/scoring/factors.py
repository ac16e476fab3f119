"""
Risk Scoring — banded factor definitions

Each factor:
  1. Takes raw input from RiskFactors
  2. Maps it to a band
  3. Returns the penalty points for that band

Factors are grouped into the four risk categories in the engine; the category
sub-score is the clamped sum of its factor penalties.

Convention: HIGHER penalty = HIGHER risk. Zero means "no concern".
"""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FactorResult:
    factor_name: str
    raw_value: str
    bin_label: str
    penalty: float


HIGH_RISK_PURPOSES = frozenset({"speculation", "gambling", "crypto_trading"})

# Market baseline the collateral asset price is compared against
BASELINE_ASSET_PRICE = 100.0


# ═══════════════════════════════════════════════════════════════
# CREDIT RISK
# ═══════════════════════════════════════════════════════════════

def score_credit_score(credit_score: float) -> FactorResult:
    raw = f"{credit_score:.0f}"
    if credit_score < 300:
        return FactorResult("CreditScore", raw, "<300 (Very poor)", 40.0)
    elif credit_score < 500:
        return FactorResult("CreditScore", raw, "300-499 (Poor)", 30.0)
    elif credit_score < 650:
        return FactorResult("CreditScore", raw, "500-649 (Fair)", 20.0)
    elif credit_score < 750:
        return FactorResult("CreditScore", raw, "650-749 (Good)", 10.0)
    elif credit_score < 850:
        return FactorResult("CreditScore", raw, "750-849 (Very good)", 5.0)
    else:
        return FactorResult("CreditScore", raw, ">=850 (Excellent)", 0.0)


def score_default_count(default_count: int) -> FactorResult:
    raw = str(default_count)
    if default_count > 3:
        return FactorResult("DefaultCount", raw, ">3", 30.0)
    elif default_count > 1:
        return FactorResult("DefaultCount", raw, "2-3", 20.0)
    elif default_count == 1:
        return FactorResult("DefaultCount", raw, "1", 10.0)
    else:
        return FactorResult("DefaultCount", raw, "None", 0.0)


def score_payment_time(avg_payment_time_days: float) -> FactorResult:
    raw = f"{avg_payment_time_days:.1f}d"
    if avg_payment_time_days > 30:
        return FactorResult("PaymentTime", raw, ">30d", 15.0)
    elif avg_payment_time_days > 15:
        return FactorResult("PaymentTime", raw, "16-30d", 10.0)
    elif avg_payment_time_days > 7:
        return FactorResult("PaymentTime", raw, "8-15d", 5.0)
    else:
        return FactorResult("PaymentTime", raw, "<=7d (Punctual)", 0.0)


def score_income_stability(income_stability: float) -> FactorResult:
    raw = f"{income_stability:.2f}"
    if income_stability < 0.5:
        return FactorResult("IncomeStability", raw, "<0.5 (Unstable)", 20.0)
    elif income_stability < 0.7:
        return FactorResult("IncomeStability", raw, "0.5-0.7", 10.0)
    elif income_stability < 0.9:
        return FactorResult("IncomeStability", raw, "0.7-0.9", 5.0)
    else:
        return FactorResult("IncomeStability", raw, ">=0.9 (Stable)", 0.0)


# ═══════════════════════════════════════════════════════════════
# MARKET RISK
# ═══════════════════════════════════════════════════════════════

def score_volatility(volatility: float) -> FactorResult:
    raw = f"{volatility:.2f}"
    if volatility > 0.8:
        return FactorResult("Volatility", raw, ">0.8 (Extreme)", 30.0)
    elif volatility > 0.6:
        return FactorResult("Volatility", raw, "0.6-0.8 (High)", 20.0)
    elif volatility > 0.4:
        return FactorResult("Volatility", raw, "0.4-0.6 (Elevated)", 10.0)
    else:
        return FactorResult("Volatility", raw, "<=0.4 (Calm)", 0.0)


def score_price_deviation(asset_price: float) -> FactorResult:
    deviation = abs(asset_price - BASELINE_ASSET_PRICE) / BASELINE_ASSET_PRICE
    raw = f"{deviation:.1%}"
    if deviation > 0.5:
        return FactorResult("PriceDeviation", raw, ">50%", 20.0)
    elif deviation > 0.3:
        return FactorResult("PriceDeviation", raw, "30-50%", 10.0)
    elif deviation > 0.1:
        return FactorResult("PriceDeviation", raw, "10-30%", 5.0)
    else:
        return FactorResult("PriceDeviation", raw, "<=10%", 0.0)


def score_rate_spread(requested_rate: float, market_rate: float) -> FactorResult:
    spread = requested_rate - market_rate
    raw = f"{spread:+.4f}"
    if spread > 0.05:
        return FactorResult("RateSpread", raw, ">+5pp", 15.0)
    elif spread > 0.02:
        return FactorResult("RateSpread", raw, "+2-5pp", 10.0)
    elif spread < -0.02:
        # Borrowing well below market is its own warning sign
        return FactorResult("RateSpread", raw, "<-2pp (Below market)", 5.0)
    else:
        return FactorResult("RateSpread", raw, "Within 2pp", 0.0)


# ═══════════════════════════════════════════════════════════════
# LIQUIDITY RISK
# ═══════════════════════════════════════════════════════════════

def score_amount_ratio(loan_amount: float, total_borrowed: float) -> FactorResult:
    ratio = loan_amount / max(total_borrowed, 1.0)
    raw = f"{ratio:.2f}x"
    if ratio > 2:
        return FactorResult("AmountRatio", raw, ">2x history", 25.0)
    elif ratio > 1.5:
        return FactorResult("AmountRatio", raw, "1.5-2x history", 15.0)
    elif ratio > 1:
        return FactorResult("AmountRatio", raw, "1-1.5x history", 10.0)
    else:
        return FactorResult("AmountRatio", raw, "<=1x history", 0.0)


def score_collateral_ratio(collateral_ratio: float) -> FactorResult:
    raw = f"{collateral_ratio:.2f}"
    if collateral_ratio < 1.2:
        return FactorResult("CollateralRatio", raw, "<1.2", 30.0)
    elif collateral_ratio < 1.5:
        return FactorResult("CollateralRatio", raw, "1.2-1.5", 20.0)
    elif collateral_ratio < 2:
        return FactorResult("CollateralRatio", raw, "1.5-2.0", 10.0)
    elif collateral_ratio < 2.5:
        return FactorResult("CollateralRatio", raw, "2.0-2.5", 5.0)
    else:
        return FactorResult("CollateralRatio", raw, ">=2.5", 0.0)


def score_duration(duration_days: int) -> FactorResult:
    raw = f"{duration_days}d"
    if duration_days > 365:
        return FactorResult("Duration", raw, ">365d", 20.0)
    elif duration_days > 180:
        return FactorResult("Duration", raw, "181-365d", 10.0)
    elif duration_days > 90:
        return FactorResult("Duration", raw, "91-180d", 5.0)
    else:
        return FactorResult("Duration", raw, "<=90d", 0.0)


# ═══════════════════════════════════════════════════════════════
# OPERATIONAL RISK
# ═══════════════════════════════════════════════════════════════

def score_borrower_age(borrower_age: float) -> FactorResult:
    """Only the tighter band applies: outside 21-60 never also earns the 25-55 penalty."""
    raw = f"{borrower_age:.0f}"
    if borrower_age < 21 or borrower_age > 60:
        return FactorResult("BorrowerAge", raw, "<21 or >60", 10.0)
    elif borrower_age < 25 or borrower_age > 55:
        return FactorResult("BorrowerAge", raw, "21-24 or 56-60", 5.0)
    else:
        return FactorResult("BorrowerAge", raw, "25-55", 0.0)


def score_loan_purpose(loan_purpose: str) -> FactorResult:
    purpose = (loan_purpose or "").strip().lower()
    if purpose in HIGH_RISK_PURPOSES:
        return FactorResult("LoanPurpose", purpose, "High-risk purpose", 20.0)
    return FactorResult("LoanPurpose", purpose or "unspecified", "Standard", 0.0)


def score_amount_concentration(loan_amount: float) -> FactorResult:
    raw = f"{loan_amount:.0f}"
    if loan_amount > 1_000_000:
        return FactorResult("AmountConcentration", raw, ">1M", 15.0)
    elif loan_amount > 500_000:
        return FactorResult("AmountConcentration", raw, "500k-1M", 10.0)
    elif loan_amount > 100_000:
        return FactorResult("AmountConcentration", raw, "100k-500k", 5.0)
    else:
        return FactorResult("AmountConcentration", raw, "<=100k", 0.0)
