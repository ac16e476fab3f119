"""
Service wiring.

build_platform() assembles the repositories and collaborators into the
LendingOrchestrator + LiquidationEngine pair. The API layer gets the shared
instance through get_platform(); tests build their own.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from app.core.config import Settings, get_settings
from app.models.repository import InMemoryRepository, KeyedLocks
from app.schemas.lending import ActiveLoan, LoanApplication, LoanOffer, LoanPayment
from app.services.event_publisher import KafkaEventSink, MonitoringEventRecorder, build_event_sink
from app.services.governance import GovernanceParameters
from app.services.lending import LendingOrchestrator
from app.services.liquidation_engine import LiquidationEngine
from app.services.price_feed import StaticMarketData, build_price_feed
from app.services.transfers import InMemoryTransferLedger
from app.services.users import RepositoryUserDirectory


@dataclass
class Platform:
    lending: LendingOrchestrator
    liquidation: LiquidationEngine
    governance: GovernanceParameters
    users: RepositoryUserDirectory
    market: StaticMarketData
    events: MonitoringEventRecorder
    price_feed: object
    transfers: object
    event_sink: Optional[KafkaEventSink] = None


def build_platform(
    settings: Optional[Settings] = None,
    price_feed=None,
    transfers=None,
) -> Platform:
    settings = settings or get_settings()
    price_feed = price_feed or build_price_feed(settings)
    transfers = transfers or InMemoryTransferLedger()

    loans = InMemoryRepository[ActiveLoan]("ActiveLoan")
    loan_locks = KeyedLocks()
    event_sink = build_event_sink(settings)
    events = MonitoringEventRecorder(sink=event_sink)
    governance = GovernanceParameters.from_settings(settings)
    users = RepositoryUserDirectory()
    market = StaticMarketData.from_settings(settings)

    liquidation = LiquidationEngine(
        loans=loans,
        price_feed=price_feed,
        transfers=transfers,
        events=events,
        governance=governance,
        loan_locks=loan_locks,
    )
    lending = LendingOrchestrator(
        applications=InMemoryRepository[LoanApplication]("LoanApplication"),
        offers=InMemoryRepository[LoanOffer]("LoanOffer"),
        loans=loans,
        payments=InMemoryRepository[LoanPayment]("LoanPayment"),
        users=users,
        market=market,
        transfers=transfers,
        events=events,
        governance=governance,
        liquidation=liquidation,
        loan_locks=loan_locks,
        default_offer_expiry_hours=settings.default_offer_expiry_hours,
    )
    return Platform(
        lending=lending,
        liquidation=liquidation,
        governance=governance,
        users=users,
        market=market,
        events=events,
        price_feed=price_feed,
        transfers=transfers,
        event_sink=event_sink,
    )


@lru_cache
def get_platform() -> Platform:
    return build_platform()
