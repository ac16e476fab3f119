"""
Collateral price feeds + market snapshot.

HttpPriceFeed   → external oracle over HTTP (price_feed_url set)
StaticPriceFeed → in-process values, falls back to the loan's last known
                  collateral value. Used in development and tests.

Neither feed invents prices: a missing quote is an error, not a guess.
"""
from __future__ import annotations

from typing import Optional

import httpx
import structlog

from app.core.config import Settings
from app.core.errors import PriceFeedError
from app.schemas.lending import ActiveLoan
from app.schemas.risk_request import MarketConditions

logger = structlog.get_logger()


class StaticPriceFeed:
    def __init__(self, values: Optional[dict[str, float]] = None):
        self._values: dict[str, float] = dict(values or {})

    def set_value(self, loan_id: str, value: float) -> None:
        self._values[loan_id] = value

    def get_collateral_value(self, loan: ActiveLoan) -> float:
        if loan.id in self._values:
            return self._values[loan.id]
        if loan.collateral_value > 0:
            return loan.collateral_value
        raise PriceFeedError(f"No collateral quote for loan {loan.id}", {"loan_id": loan.id})


class HttpPriceFeed:
    """
    GET {base_url}/collateral/{loan_id}  →  {"loan_id": ..., "value": 1234.5}
    """

    def __init__(self, base_url: str, timeout_seconds: float = 5.0, client: Optional[httpx.Client] = None):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout_seconds)

    def get_collateral_value(self, loan: ActiveLoan) -> float:
        url = f"{self._base_url}/collateral/{loan.id}"
        try:
            resp = self._client.get(url)
            resp.raise_for_status()
            value = float(resp.json()["value"])
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning("price_feed_request_failed", loan_id=loan.id, error=str(e))
            raise PriceFeedError(f"Price feed unavailable for loan {loan.id}: {e}", {"loan_id": loan.id}) from e

        if value < 0:
            raise PriceFeedError(f"Negative collateral quote for loan {loan.id}", {"loan_id": loan.id})
        return value

    def close(self) -> None:
        self._client.close()


class StaticMarketData:
    """Market snapshot from settings; replace with a live feed in production."""

    def __init__(self, conditions: MarketConditions):
        self._conditions = conditions

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticMarketData":
        return cls(MarketConditions(
            asset_price=settings.market_asset_price,
            volatility=settings.market_volatility,
            lending_rate=settings.market_lending_rate,
        ))

    def update(self, conditions: MarketConditions) -> None:
        self._conditions = conditions

    def current(self) -> MarketConditions:
        return self._conditions


def build_price_feed(settings: Settings):
    if settings.price_feed_url:
        return HttpPriceFeed(settings.price_feed_url, settings.price_feed_timeout_seconds)
    return StaticPriceFeed()
