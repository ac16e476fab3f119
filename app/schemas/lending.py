"""
Lending domain records: users, applications, offers, active loans, payments.

These are plain pydantic models held by the repository layer
(app/models/repository.py). Status enums mirror the loan lifecycle:

  application:  PENDING → APPROVED | REJECTED → ACTIVE → REPAID | DEFAULTED
  offer:        PENDING → ACCEPTED | EXPIRED | REJECTED | CANCELLED
  loan:         ACTIVE  → REPAID | DEFAULTED | LIQUIDATED | CANCELLED
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.risk_response import RiskAssessmentResult


class UserRole(str, Enum):
    BORROWER = "borrower"
    LENDER = "lender"
    BOTH = "both"
    ADMIN = "admin"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    REPAID = "repaid"
    DEFAULTED = "defaulted"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class LoanStatus(str, Enum):
    ACTIVE = "active"
    REPAID = "repaid"
    DEFAULTED = "defaulted"
    LIQUIDATED = "liquidated"
    CANCELLED = "cancelled"


TERMINAL_LOAN_STATUSES = frozenset({LoanStatus.REPAID, LoanStatus.DEFAULTED, LoanStatus.LIQUIDATED})


class User(BaseModel):
    id: str
    credit_score: float = 0.0
    total_borrowed: float = 0.0
    total_lent: float = 0.0
    default_count: int = 0
    avg_payment_time_days: float = 0.0
    role: UserRole = UserRole.BOTH
    wallet_address: Optional[str] = None
    version: int = 0


class ApplicationParams(BaseModel):
    """Borrower-supplied input to submit_application()."""
    borrower_id: str
    amount: float
    interest_rate: float
    duration_days: int
    collateral_ratio: float
    loan_purpose: str = ""
    borrower_age: float = 0.0
    income_stability: float = 0.0
    description: Optional[str] = None


class LoanApplication(BaseModel):
    id: str
    borrower_id: str
    amount: float
    interest_rate: float
    duration_days: int
    collateral_ratio: float
    loan_purpose: str = ""
    description: Optional[str] = None
    status: ApplicationStatus = ApplicationStatus.PENDING
    risk_assessment: Optional[RiskAssessmentResult] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    version: int = 0


class LoanOffer(BaseModel):
    id: str
    lender_id: str
    application_id: str
    offered_amount: float
    offered_interest_rate: float
    terms: str = ""
    status: OfferStatus = OfferStatus.PENDING
    created_at: datetime
    expires_at: datetime
    version: int = 0


class ActiveLoan(BaseModel):
    id: str
    application_id: str
    borrower_id: str
    lender_id: str
    principal: float
    interest_rate: float
    remaining_amount: float
    collateral_value: float = 0.0
    current_collateral_ratio: Optional[float] = None
    status: LoanStatus = LoanStatus.ACTIVE
    next_payment_date: datetime
    completed_payments: int = 0
    total_payments: int
    last_payment_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int = Field(0, description="Optimistic concurrency counter")


class LoanPayment(BaseModel):
    id: str
    loan_id: str
    amount: float
    principal_portion: float
    interest_portion: float
    remaining_after: float
    transaction_ref: str
    paid_at: datetime
    version: int = 0


class LendingStatistics(BaseModel):
    total_applications: int
    approved_applications: int
    active_loans: int
    total_lent: float
    average_interest_rate: float


class PaymentResult(BaseModel):
    payment: LoanPayment
    loan: ActiveLoan
