"""
Liquidation Engine

One monitoring cycle:
  1. Snapshot governance parameters (threshold, penalty, seizure fraction)
  2. For each ACTIVE loan, in listing order:
       a. fetch collateral quote → LiquidationCheck
       b. persist observed collateral value + ratio
       c. if flagged → liquidate now, before moving to the next loan
  3. Return the checks

Liquidation:
    penalty    = amount × liquidation_penalty
    total_due  = amount + penalty
    collateral <  total_due → PARTIAL: seize collateral × seizure fraction,
                              remaining = max(0, remaining − seized)
    collateral >= total_due → FULL:    seize total_due, remaining = 0
    Either way the loan ends LIQUIDATED.

Failure policy: a price-feed or transfer failure leaves the loan untouched and
ACTIVE, so the next cycle retries it. Loan state is only committed after the
transfer succeeds.

The engine has no notion of cadence; something external calls run_cycle()
(see app/services/scheduler.py). Cycles are single-flight.
"""
from __future__ import annotations

import math
import threading
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Optional

import structlog

from app.core.errors import StateConflictError, ValidationError, VersionConflictError, logged_operation
from app.core.metrics import liquidation_cycle_duration, liquidations
from app.models.repository import KeyedLocks, Repository
from app.schemas.lending import ActiveLoan, LoanStatus
from app.schemas.liquidation import LiquidationCheck, LiquidationResult, LiquidationStatus
from app.services.collateral_monitor import check_loan
from app.services.event_publisher import record_safely
from app.services.governance import GovernanceParameters, ProtocolParameters
from app.services.interfaces import CollateralValueProvider, EventRecorder, TransferExecutor

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _operation(name: str, **ids):
    return logged_operation("liquidation_operation_failed", name, **ids)


class LiquidationEngine:
    def __init__(
        self,
        loans: Repository[ActiveLoan],
        price_feed: CollateralValueProvider,
        transfers: TransferExecutor,
        events: EventRecorder,
        governance: GovernanceParameters,
        loan_locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._loans = loans
        self._price_feed = price_feed
        self._transfers = transfers
        self._events = events
        self._governance = governance
        self._loan_locks = loan_locks or KeyedLocks()
        self._clock = clock
        self._cycle_lock = threading.Lock()

    # ═══════════════════════════════════════════════════════════════
    # Monitoring cycle
    # ═══════════════════════════════════════════════════════════════

    def run_cycle(self, active_loans: Optional[Iterable[ActiveLoan]] = None) -> list[LiquidationCheck]:
        """
        Check every ACTIVE loan exactly once and liquidate the flagged ones.

        If a previous cycle is still running this call is skipped and
        returns an empty list.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.warning("liquidation_cycle_skipped", reason="previous cycle still running")
            return []

        try:
            params = self._governance.snapshot()
            if active_loans is None:
                active_loans = self._loans.list_by_status(LoanStatus.ACTIVE)

            checks: list[LiquidationCheck] = []
            seen: set[str] = set()
            liquidated = 0

            with liquidation_cycle_duration.time():
                logger.info("liquidation_cycle_started", threshold=params.liquidation_threshold)
                for loan in active_loans:
                    if loan.id in seen:
                        continue
                    seen.add(loan.id)

                    try:
                        check, result = self._check_and_liquidate(loan.id, params)
                    except VersionConflictError as e:
                        logger.error("liquidation_commit_conflict", loan_id=loan.id, error=str(e))
                        record_safely(self._events, "liquidation_check_failed", {"loan_id": loan.id, "error": str(e)})
                        continue
                    if check is not None:
                        checks.append(check)
                    if result is not None and result.success:
                        liquidated += 1

            logger.info(
                "liquidation_cycle_complete",
                loans_checked=len(checks),
                loans_seen=len(seen),
                flagged=sum(1 for c in checks if c.needs_liquidation),
                liquidated=liquidated,
            )
            return checks
        finally:
            self._cycle_lock.release()

    def _check_and_liquidate(
        self,
        loan_id: str,
        params: ProtocolParameters,
    ) -> tuple[Optional[LiquidationCheck], Optional[LiquidationResult]]:
        with self._loan_locks.hold(loan_id):
            loan = self._loans.get(loan_id)
            if loan is None:
                logger.warning("liquidation_loan_unknown", operation="liquidation_check", loan_id=loan_id)
                return None, None
            if loan.status != LoanStatus.ACTIVE:
                logger.debug("liquidation_loan_not_active", loan_id=loan_id, status=loan.status.value)
                return None, None

            try:
                check = check_loan(loan, self._price_feed, params.liquidation_threshold)
            except Exception as e:
                # Left ACTIVE; next cycle retries
                logger.error(
                    "liquidation_check_failed",
                    operation="liquidation_check",
                    loan_id=loan_id,
                    error=str(e),
                )
                record_safely(self._events, "liquidation_check_failed", {"loan_id": loan_id, "error": str(e)})
                return None, None

            loan.collateral_value = check.collateral_value
            loan.current_collateral_ratio = _finite_or_none(check.current_collateral_ratio)
            loan.updated_at = self._clock()
            loan = self._loans.update(loan)

            if not check.needs_liquidation:
                return check, None

            logger.warning(
                "liquidation_required",
                loan_id=loan_id,
                ratio=round(check.current_collateral_ratio, 4),
                required=check.required_collateral_ratio,
                liquidation_amount=round(check.liquidation_amount, 2),
            )
            record_safely(self._events, "liquidation_required", check.model_dump())
            return check, self._execute(loan, check.liquidation_amount, params)

    # ═══════════════════════════════════════════════════════════════
    # Liquidation
    # ═══════════════════════════════════════════════════════════════

    def liquidate(self, loan: ActiveLoan, liquidation_amount: float) -> LiquidationResult:
        """
        Liquidate one loan. Raises StateConflictError if the loan is no
        longer ACTIVE, so a second call can never seize collateral twice.
        """
        params = self._governance.snapshot()
        with _operation("liquidate", loan_id=loan.id):
            if liquidation_amount <= 0:
                raise ValidationError("liquidation_amount", "must be positive")

            with self._loan_locks.hold(loan.id):
                current = self._loans.require(loan.id)
                if current.status != LoanStatus.ACTIVE:
                    raise StateConflictError(
                        f"Loan {loan.id} is {current.status.value}, only active loans can be liquidated",
                        {"loan_id": loan.id, "status": current.status.value},
                    )
                return self._execute(current, liquidation_amount, params)

    def _execute(self, loan: ActiveLoan, liquidation_amount: float, params: ProtocolParameters) -> LiquidationResult:
        """Caller holds the loan lock and has verified the loan is ACTIVE."""
        penalty = liquidation_amount * params.liquidation_penalty
        total_due = liquidation_amount + penalty

        logger.info(
            "liquidation_started",
            loan_id=loan.id,
            liquidation_amount=round(liquidation_amount, 2),
            penalty=round(penalty, 2),
        )

        try:
            collateral_value = self._price_feed.get_collateral_value(loan)
            partial = collateral_value < total_due
            if partial:
                seized = collateral_value * params.partial_seizure_fraction
                remaining = max(0.0, loan.remaining_amount - seized)
            else:
                seized = total_due
                remaining = 0.0

            transaction_ref = None
            if seized > 0:
                receipt = self._transfers.execute_transfer(
                    loan.borrower_id,
                    loan.lender_id,
                    seized,
                    memo=f"liquidation:{loan.id}",
                )
                transaction_ref = receipt.transaction_ref
        except Exception as e:
            liquidations.labels(kind="failed").inc()
            logger.error(
                "liquidation_failed",
                operation="liquidate",
                loan_id=loan.id,
                error=str(e),
            )
            record_safely(self._events, "liquidation_failed", {"loan_id": loan.id, "error": str(e)})
            return LiquidationResult(
                success=False,
                loan_id=loan.id,
                liquidated_amount=0.0,
                remaining_debt=loan.remaining_amount,
                error=str(e),
            )

        # ── Transfer succeeded: commit ──
        collateral_left = max(0.0, collateral_value - seized)
        loan.status = LoanStatus.LIQUIDATED
        loan.remaining_amount = remaining
        loan.collateral_value = collateral_left
        loan.current_collateral_ratio = collateral_left / remaining if remaining > 0 else None
        loan.updated_at = self._clock()
        self._loans.update(loan)

        kind = "partial" if partial else "full"
        liquidations.labels(kind=kind).inc()
        record_safely(
            self._events,
            f"loan_liquidated_{kind}",
            {
                "loan_id": loan.id,
                "liquidated_amount": seized,
                "penalty": penalty,
                "remaining_debt": remaining,
                "transaction_ref": transaction_ref,
            },
        )

        return LiquidationResult(
            success=True,
            loan_id=loan.id,
            liquidated_amount=seized,
            remaining_debt=remaining,
            partial=partial,
            transaction_ref=transaction_ref,
        )

    # ═══════════════════════════════════════════════════════════════
    # Admin / reporting
    # ═══════════════════════════════════════════════════════════════

    def trigger_liquidation(self, loan_id: str) -> LiquidationResult:
        """Manual trigger: only liquidates if the loan is currently flagged."""
        params = self._governance.snapshot()
        with _operation("trigger_liquidation", loan_id=loan_id), self._loan_locks.hold(loan_id):
            loan = self._loans.require(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise StateConflictError(
                    f"Loan {loan_id} is {loan.status.value}, only active loans can be liquidated",
                    {"loan_id": loan_id, "status": loan.status.value},
                )

            check = check_loan(loan, self._price_feed, params.liquidation_threshold)
            if not check.needs_liquidation:
                raise StateConflictError(
                    f"Loan {loan_id} does not meet liquidation criteria",
                    {"loan_id": loan_id, "ratio": _finite_or_none(check.current_collateral_ratio)},
                )

            logger.info("manual_liquidation_triggered", loan_id=loan_id)
            return self._execute(loan, check.liquidation_amount, params)

    def liquidation_status(self) -> LiquidationStatus:
        """Read-only view: evaluates every ACTIVE loan without persisting or liquidating."""
        params = self._governance.snapshot()
        active = self._loans.list_by_status(LoanStatus.ACTIVE)

        checks: list[LiquidationCheck] = []
        for loan in active:
            try:
                checks.append(check_loan(loan, self._price_feed, params.liquidation_threshold))
            except Exception as e:
                logger.warning("liquidation_status_quote_failed", loan_id=loan.id, error=str(e))

        return LiquidationStatus(
            total_active_loans=len(active),
            at_risk_loans=sum(1 for c in checks if c.current_collateral_ratio < params.at_risk_collateral_ratio),
            critical_loans=sum(1 for c in checks if c.needs_liquidation),
            checks=checks,
        )

    def liquidation_history(self, limit: int = 50) -> list[ActiveLoan]:
        liquidated = self._loans.list_by_status(LoanStatus.LIQUIDATED)
        liquidated.sort(key=lambda l: l.updated_at, reverse=True)
        return liquidated[:limit]


def _finite_or_none(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None
