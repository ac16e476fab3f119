"""
Lending Orchestrator — loan lifecycle state machine.

    submit_application  → risk assessment → APPROVED | REJECTED
    create_offer        → lender offer on an APPROVED application (PENDING)
    accept_offer        → application ACTIVE, offer ACCEPTED, ActiveLoan created
    process_payment     → interest first, remainder retires principal;
                          remaining == 0 → REPAID
    mark_defaulted      → ACTIVE → DEFAULTED
    run_liquidation_cycle → delegates to the LiquidationEngine

Every failure is logged with the operation name and the entity id before it
propagates. Payments are all-or-nothing: the transfer runs first and loan
state is only committed once it succeeds.
"""
from __future__ import annotations

import math
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from dateutil.relativedelta import relativedelta

from app.core.errors import (
    ExternalFailure,
    StateConflictError,
    TransferError,
    ValidationError,
    logged_operation,
)
from app.core.metrics import loan_payments, risk_assessments
from app.models.repository import KeyedLocks, Repository
from app.schemas.lending import (
    ActiveLoan,
    ApplicationParams,
    ApplicationStatus,
    LendingStatistics,
    LoanApplication,
    LoanOffer,
    LoanPayment,
    LoanStatus,
    OfferStatus,
    PaymentResult,
)
from app.schemas.liquidation import LiquidationCheck
from app.schemas.risk_request import BorrowerHistory, RiskFactors
from app.scoring.engine import assess_risk
from app.services.event_publisher import record_safely
from app.services.governance import GovernanceParameters
from app.services.interfaces import EventRecorder, MarketDataProvider, TransferExecutor, UserDirectory
from app.services.liquidation_engine import LiquidationEngine

logger = structlog.get_logger()

DAYS_PER_PAYMENT_PERIOD = 30
DEFAULT_OFFER_EXPIRY_HOURS = 24
# Remaining balances below half a cent are treated as fully repaid
AMOUNT_EPSILON = 0.005


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _operation(name: str, **ids):
    return logged_operation("lending_operation_failed", name, **ids)


class LendingOrchestrator:
    def __init__(
        self,
        applications: Repository[LoanApplication],
        offers: Repository[LoanOffer],
        loans: Repository[ActiveLoan],
        payments: Repository[LoanPayment],
        users: UserDirectory,
        market: MarketDataProvider,
        transfers: TransferExecutor,
        events: EventRecorder,
        governance: GovernanceParameters,
        liquidation: LiquidationEngine,
        loan_locks: Optional[KeyedLocks] = None,
        default_offer_expiry_hours: int = DEFAULT_OFFER_EXPIRY_HOURS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._applications = applications
        self._offers = offers
        self._loans = loans
        self._payments = payments
        self._users = users
        self._market = market
        self._transfers = transfers
        self._events = events
        self._governance = governance
        self._liquidation = liquidation
        self._loan_locks = loan_locks or KeyedLocks()
        self._application_locks = KeyedLocks()
        self._default_offer_expiry_hours = default_offer_expiry_hours
        self._clock = clock

    # ═══════════════════════════════════════════════════════════════
    # Applications
    # ═══════════════════════════════════════════════════════════════

    def submit_application(self, params: ApplicationParams) -> LoanApplication:
        with _operation("submit_application", borrower_id=params.borrower_id):
            self._ensure_not_paused("submit_application")

            if params.amount <= 0:
                raise ValidationError("amount", "must be positive")
            if params.duration_days <= 0:
                raise ValidationError("duration_days", "must be positive")
            if params.collateral_ratio <= 0:
                raise ValidationError("collateral_ratio", "must be positive")

            borrower = self._users.get_user(params.borrower_id)
            if borrower is None:
                raise ValidationError("borrower_id", f"unknown borrower '{params.borrower_id}'")

            factors = RiskFactors(
                credit_score=borrower.credit_score,
                loan_amount=params.amount,
                interest_rate=params.interest_rate,
                duration_days=params.duration_days,
                collateral_ratio=params.collateral_ratio,
                borrower_history=BorrowerHistory(
                    total_borrowed=borrower.total_borrowed,
                    total_lent=borrower.total_lent,
                    default_count=borrower.default_count,
                    avg_payment_time_days=borrower.avg_payment_time_days,
                ),
                market_conditions=self._market.current(),
                loan_purpose=params.loan_purpose,
                borrower_age=params.borrower_age,
                income_stability=params.income_stability,
            )
            assessment = assess_risk(factors)
            risk_assessments.labels(
                risk_level=assessment.risk_level.value,
                approved=str(assessment.approved).lower(),
            ).inc()

            now = self._clock()
            application = LoanApplication(
                id=_new_id(),
                borrower_id=params.borrower_id,
                amount=params.amount,
                interest_rate=params.interest_rate,
                duration_days=params.duration_days,
                collateral_ratio=params.collateral_ratio,
                loan_purpose=params.loan_purpose,
                description=params.description,
                status=ApplicationStatus.APPROVED if assessment.approved else ApplicationStatus.REJECTED,
                risk_assessment=assessment,
                rejection_reason=None if assessment.approved else _rejection_reason(assessment.risk_score),
                created_at=now,
                updated_at=now,
            )
            application = self._applications.add(application)

        logger.info(
            "loan_application_submitted",
            application_id=application.id,
            borrower_id=application.borrower_id,
            status=application.status.value,
            score=assessment.risk_score,
            level=assessment.risk_level.value,
        )
        record_safely(
            self._events,
            "application_submitted",
            {
                "application_id": application.id,
                "borrower_id": application.borrower_id,
                "status": application.status.value,
                "risk_score": assessment.risk_score,
            },
        )
        return application

    # ═══════════════════════════════════════════════════════════════
    # Offers
    # ═══════════════════════════════════════════════════════════════

    def create_offer(
        self,
        lender_id: str,
        application_id: str,
        amount: float,
        interest_rate: float,
        terms: str = "",
        expiry_hours: Optional[float] = None,
    ) -> LoanOffer:
        if expiry_hours is None:
            expiry_hours = self._default_offer_expiry_hours

        with _operation("create_offer", application_id=application_id, lender_id=lender_id):
            self._ensure_not_paused("create_offer")

            application = self._applications.require(application_id)
            if application.status != ApplicationStatus.APPROVED:
                raise StateConflictError(
                    f"Cannot create offer for {application.status.value} application {application_id}",
                    {"application_id": application_id, "status": application.status.value},
                )
            if amount <= 0:
                raise ValidationError("amount", "must be positive")
            if interest_rate < 0:
                raise ValidationError("interest_rate", "must not be negative")
            if expiry_hours <= 0:
                raise ValidationError("expiry_hours", "must be positive")
            if lender_id == application.borrower_id:
                raise ValidationError("lender_id", "borrower cannot fund their own application")

            now = self._clock()
            offer = self._offers.add(LoanOffer(
                id=_new_id(),
                lender_id=lender_id,
                application_id=application_id,
                offered_amount=amount,
                offered_interest_rate=interest_rate,
                terms=terms,
                created_at=now,
                expires_at=now + timedelta(hours=expiry_hours),
            ))

        logger.info("loan_offer_created", offer_id=offer.id, application_id=application_id, lender_id=lender_id)
        return offer

    def accept_offer(self, offer_id: str, borrower_id: str) -> ActiveLoan:
        """
        Activate a loan from a PENDING offer.

        Holds the application's lock for the whole sequence. The application
        is committed to ACTIVE before the loan is created, so a concurrent
        writer fails the version check while no loan exists yet. A failure
        after that commit puts the application back to APPROVED.
        """
        with _operation("accept_offer", offer_id=offer_id, borrower_id=borrower_id):
            application_id = self._offers.require(offer_id).application_id
            with self._application_locks.hold(application_id):
                offer = self._offers.require(offer_id)
                if offer.status != OfferStatus.PENDING:
                    raise StateConflictError(
                        f"Offer {offer_id} is {offer.status.value}, no longer available",
                        {"offer_id": offer_id, "status": offer.status.value},
                    )

                now = self._clock()
                if now > offer.expires_at:
                    offer.status = OfferStatus.EXPIRED
                    self._offers.update(offer)
                    raise StateConflictError(f"Offer {offer_id} has expired", {"offer_id": offer_id})

                application = self._applications.require(application_id)
                if application.borrower_id != borrower_id:
                    raise ValidationError("borrower_id", "offer does not belong to this borrower")
                if application.status != ApplicationStatus.APPROVED:
                    raise StateConflictError(
                        f"Application {application.id} is {application.status.value}",
                        {"application_id": application.id, "status": application.status.value},
                    )

                application.status = ApplicationStatus.ACTIVE
                application.updated_at = now
                application = self._applications.update(application)

                accepted = None
                try:
                    offer.status = OfferStatus.ACCEPTED
                    accepted = self._offers.update(offer)
                    loan = self._loans.add(ActiveLoan(
                        id=_new_id(),
                        application_id=application.id,
                        borrower_id=borrower_id,
                        lender_id=offer.lender_id,
                        principal=offer.offered_amount,
                        interest_rate=offer.offered_interest_rate,
                        remaining_amount=offer.offered_amount,
                        collateral_value=offer.offered_amount * application.collateral_ratio,
                        current_collateral_ratio=application.collateral_ratio,
                        next_payment_date=now + relativedelta(months=1),
                        total_payments=max(1, math.ceil(application.duration_days / DAYS_PER_PAYMENT_PERIOD)),
                        created_at=now,
                        updated_at=now,
                    ))
                except Exception:
                    self._rollback_acceptance(application, accepted)
                    raise

        logger.info("loan_offer_accepted", offer_id=offer_id, loan_id=loan.id, application_id=application.id)
        record_safely(
            self._events,
            "loan_activated",
            {"loan_id": loan.id, "application_id": application.id, "principal": loan.principal},
        )
        return loan

    # ═══════════════════════════════════════════════════════════════
    # Payments
    # ═══════════════════════════════════════════════════════════════

    def process_payment(self, loan_id: str, amount: float) -> PaymentResult:
        with _operation("process_payment", loan_id=loan_id):
            if amount <= 0:
                raise ValidationError("amount", "must be positive")

            with self._loan_locks.hold(loan_id):
                loan = self._loans.require(loan_id)
                if loan.status != LoanStatus.ACTIVE:
                    raise StateConflictError(
                        f"Loan {loan_id} is {loan.status.value}, payments need an active loan",
                        {"loan_id": loan_id, "status": loan.status.value},
                    )

                monthly_interest = loan.remaining_amount * loan.interest_rate / 12
                if amount < monthly_interest:
                    raise ValidationError(
                        "amount",
                        f"payment {amount:.2f} does not cover accrued interest {monthly_interest:.2f}",
                    )
                principal_portion = amount - monthly_interest
                remaining = max(0.0, loan.remaining_amount - principal_portion)
                if remaining < AMOUNT_EPSILON:
                    remaining = 0.0

                try:
                    receipt = self._transfers.execute_transfer(
                        loan.borrower_id,
                        loan.lender_id,
                        amount,
                        memo=f"payment:{loan_id}",
                    )
                except TransferError:
                    loan_payments.labels(outcome="failed").inc()
                    raise
                except Exception as e:
                    loan_payments.labels(outcome="failed").inc()
                    raise ExternalFailure(f"Payment transfer failed for loan {loan_id}: {e}", {"loan_id": loan_id}) from e

                # ── Transfer succeeded: commit ──
                now = self._clock()
                loan.remaining_amount = remaining
                loan.completed_payments += 1
                loan.last_payment_date = now
                loan.updated_at = now
                if remaining == 0:
                    loan.status = LoanStatus.REPAID
                else:
                    loan.next_payment_date = loan.next_payment_date + relativedelta(months=1)
                loan = self._loans.update(loan)

                payment = self._payments.add(LoanPayment(
                    id=_new_id(),
                    loan_id=loan_id,
                    amount=amount,
                    principal_portion=principal_portion,
                    interest_portion=monthly_interest,
                    remaining_after=remaining,
                    transaction_ref=receipt.transaction_ref,
                    paid_at=now,
                ))

            if loan.status == LoanStatus.REPAID:
                self._set_application_status(loan.application_id, ApplicationStatus.REPAID)

        loan_payments.labels(outcome="repaid" if loan.status == LoanStatus.REPAID else "applied").inc()
        logger.info(
            "loan_payment_processed",
            loan_id=loan_id,
            amount=round(amount, 2),
            remaining=round(remaining, 2),
            status=loan.status.value,
        )
        record_safely(
            self._events,
            "loan_repaid" if loan.status == LoanStatus.REPAID else "loan_payment",
            {"loan_id": loan_id, "amount": amount, "remaining": remaining},
        )
        return PaymentResult(payment=payment, loan=loan)

    def mark_defaulted(self, loan_id: str, reason: str = "") -> ActiveLoan:
        with _operation("mark_defaulted", loan_id=loan_id):
            with self._loan_locks.hold(loan_id):
                loan = self._loans.require(loan_id)
                if loan.status != LoanStatus.ACTIVE:
                    raise StateConflictError(
                        f"Loan {loan_id} is {loan.status.value}, only active loans can default",
                        {"loan_id": loan_id, "status": loan.status.value},
                    )
                loan.status = LoanStatus.DEFAULTED
                loan.updated_at = self._clock()
                loan = self._loans.update(loan)
            self._set_application_status(loan.application_id, ApplicationStatus.DEFAULTED)

        logger.warning("loan_defaulted", loan_id=loan_id, reason=reason)
        record_safely(self._events, "loan_defaulted", {"loan_id": loan_id, "reason": reason})
        return loan

    def run_liquidation_cycle(self) -> list[LiquidationCheck]:
        return self._liquidation.run_cycle()

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    def get_application(self, application_id: str) -> LoanApplication:
        with _operation("get_application", application_id=application_id):
            return self._applications.require(application_id)

    def get_loan(self, loan_id: str) -> ActiveLoan:
        with _operation("get_loan", loan_id=loan_id):
            return self._loans.require(loan_id)

    def get_borrower_applications(self, borrower_id: str) -> list[LoanApplication]:
        apps = self._applications.find(lambda a: a.borrower_id == borrower_id)
        return sorted(apps, key=lambda a: a.created_at, reverse=True)

    def get_available_applications(self) -> list[LoanApplication]:
        apps = self._applications.list_by_status(ApplicationStatus.APPROVED)
        return sorted(apps, key=lambda a: a.created_at, reverse=True)

    def get_lender_offers(self, lender_id: str) -> list[LoanOffer]:
        offers = self._offers.find(lambda o: o.lender_id == lender_id)
        return sorted(offers, key=lambda o: o.created_at, reverse=True)

    def get_user_active_loans(self, user_id: str) -> list[ActiveLoan]:
        loans = self._loans.find(lambda l: l.borrower_id == user_id or l.lender_id == user_id)
        return sorted(loans, key=lambda l: l.created_at, reverse=True)

    def get_loan_payments(self, loan_id: str) -> list[LoanPayment]:
        with _operation("get_loan_payments", loan_id=loan_id):
            self._loans.require(loan_id)
        return self._payments.find(lambda p: p.loan_id == loan_id)

    def lending_statistics(self) -> LendingStatistics:
        applications = self._applications.find()
        loans = self._loans.find()
        return LendingStatistics(
            total_applications=len(applications),
            approved_applications=sum(1 for a in applications if a.status == ApplicationStatus.APPROVED),
            active_loans=sum(1 for l in loans if l.status == LoanStatus.ACTIVE),
            total_lent=sum(l.principal for l in loans),
            average_interest_rate=(sum(l.interest_rate for l in loans) / len(loans)) if loans else 0.0,
        )

    # ── helpers ──

    def _ensure_not_paused(self, operation: str) -> None:
        if self._governance.snapshot().emergency_pause:
            raise StateConflictError(f"Protocol is paused, {operation} is disabled", {"operation": operation})

    def _set_application_status(self, application_id: str, status: ApplicationStatus) -> None:
        application = self._applications.require(application_id)
        application.status = status
        application.updated_at = self._clock()
        self._applications.update(application)

    def _rollback_acceptance(self, application: LoanApplication, offer: Optional[LoanOffer]) -> None:
        application.status = ApplicationStatus.APPROVED
        application.updated_at = self._clock()
        self._applications.update(application)
        if offer is not None:
            offer.status = OfferStatus.PENDING
            self._offers.update(offer)
        logger.warning("loan_activation_rolled_back", application_id=application.id, offer_id=offer.id if offer else None)


def _rejection_reason(score: float) -> str:
    return f"Declined by risk assessment (score {score:.2f})"
