"""
Prometheus metrics. Exposed at /metrics by app/main.py.
"""
from prometheus_client import Counter, Histogram

risk_assessments = Counter(
    "lending_risk_assessments_total",
    "Risk assessments performed",
    ["risk_level", "approved"],
)

liquidations = Counter(
    "lending_liquidations_total",
    "Liquidation attempts",
    ["kind"],  # full | partial | failed
)

liquidation_cycle_duration = Histogram(
    "lending_liquidation_cycle_duration_seconds",
    "Wall time of one liquidation monitoring cycle",
)

loan_payments = Counter(
    "lending_loan_payments_total",
    "Loan payments processed",
    ["outcome"],  # applied | repaid | failed
)
