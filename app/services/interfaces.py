"""
Collaborator interfaces consumed by the lending core.

Implemented elsewhere (oracle, chain, audit sink, user service); the
in-process implementations in this package exist for wiring and tests.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from app.schemas.lending import ActiveLoan, User
from app.schemas.risk_request import MarketConditions


@dataclass(frozen=True)
class TransferReceipt:
    transaction_ref: str
    from_id: str
    to_id: str
    amount: float


class CollateralValueProvider(Protocol):
    def get_collateral_value(self, loan: ActiveLoan) -> float:
        """Current market value of the loan's collateral. Raises PriceFeedError."""
        ...


class TransferExecutor(Protocol):
    def execute_transfer(self, from_id: str, to_id: str, amount: float, memo: str = "") -> TransferReceipt:
        """Move funds / collateral. Raises TransferError."""
        ...


class EventRecorder(Protocol):
    def record_event(self, kind: str, payload: dict[str, Any]) -> None:
        """Fire-and-forget audit / monitoring sink. Must never raise."""
        ...


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> Optional[User]:
        ...


class MarketDataProvider(Protocol):
    def current(self) -> MarketConditions:
        ...
