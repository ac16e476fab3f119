"""
Loan lifecycle endpoints — thin wrappers over LendingOrchestrator.

Domain errors propagate to the exception handlers registered in app/main.py.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.schemas.lending import (
    ActiveLoan,
    ApplicationParams,
    LendingStatistics,
    LoanApplication,
    LoanOffer,
    LoanPayment,
    PaymentResult,
    User,
    UserRole,
)
from app.services.platform import Platform, get_platform

router = APIRouter(prefix="/v1/lending", tags=["lending"])


# ── Request bodies ──

class OfferRequest(BaseModel):
    lender_id: str
    application_id: str
    amount: float
    interest_rate: float
    terms: str = ""
    expiry_hours: Optional[float] = None


class AcceptOfferRequest(BaseModel):
    borrower_id: str


class PaymentRequest(BaseModel):
    amount: float


class DefaultRequest(BaseModel):
    reason: str = ""


class UserRequest(BaseModel):
    id: str
    credit_score: float = 0.0
    total_borrowed: float = 0.0
    total_lent: float = 0.0
    default_count: int = 0
    avg_payment_time_days: float = 0.0
    role: UserRole = UserRole.BOTH
    wallet_address: Optional[str] = None


# ── Endpoints ──

@router.post("/users", response_model=User, status_code=201)
def register_user(body: UserRequest, platform: Platform = Depends(get_platform)):
    return platform.users.register(User(**body.model_dump()))


@router.get("/users/{user_id}", response_model=User)
def get_user(user_id: str, platform: Platform = Depends(get_platform)):
    return platform.users.require_user(user_id)


@router.post("/applications", response_model=LoanApplication, status_code=201)
def submit_application(params: ApplicationParams, platform: Platform = Depends(get_platform)):
    return platform.lending.submit_application(params)


@router.get("/applications", response_model=list[LoanApplication])
def list_applications(borrower_id: Optional[str] = None, platform: Platform = Depends(get_platform)):
    """Approved applications open for offers, or one borrower's applications."""
    if borrower_id:
        return platform.lending.get_borrower_applications(borrower_id)
    return platform.lending.get_available_applications()


@router.get("/applications/{application_id}", response_model=LoanApplication)
def get_application(application_id: str, platform: Platform = Depends(get_platform)):
    return platform.lending.get_application(application_id)


@router.post("/offers", response_model=LoanOffer, status_code=201)
def create_offer(body: OfferRequest, platform: Platform = Depends(get_platform)):
    return platform.lending.create_offer(
        lender_id=body.lender_id,
        application_id=body.application_id,
        amount=body.amount,
        interest_rate=body.interest_rate,
        terms=body.terms,
        expiry_hours=body.expiry_hours,
    )


@router.get("/lenders/{lender_id}/offers", response_model=list[LoanOffer])
def lender_offers(lender_id: str, platform: Platform = Depends(get_platform)):
    return platform.lending.get_lender_offers(lender_id)


@router.post("/offers/{offer_id}/accept", response_model=ActiveLoan, status_code=201)
def accept_offer(offer_id: str, body: AcceptOfferRequest, platform: Platform = Depends(get_platform)):
    return platform.lending.accept_offer(offer_id, body.borrower_id)


@router.get("/loans/{loan_id}", response_model=ActiveLoan)
def get_loan(loan_id: str, platform: Platform = Depends(get_platform)):
    return platform.lending.get_loan(loan_id)


@router.post("/loans/{loan_id}/payments", response_model=PaymentResult)
def process_payment(loan_id: str, body: PaymentRequest, platform: Platform = Depends(get_platform)):
    return platform.lending.process_payment(loan_id, body.amount)


@router.get("/loans/{loan_id}/payments", response_model=list[LoanPayment])
def loan_payments(loan_id: str, platform: Platform = Depends(get_platform)):
    return platform.lending.get_loan_payments(loan_id)


@router.post("/loans/{loan_id}/default", response_model=ActiveLoan)
def mark_defaulted(loan_id: str, body: DefaultRequest, platform: Platform = Depends(get_platform)):
    return platform.lending.mark_defaulted(loan_id, body.reason)


@router.get("/users/{user_id}/loans", response_model=list[ActiveLoan])
def user_loans(user_id: str, platform: Platform = Depends(get_platform)):
    return platform.lending.get_user_active_loans(user_id)


@router.get("/statistics", response_model=LendingStatistics)
def statistics(platform: Platform = Depends(get_platform)):
    return platform.lending.lending_statistics()
