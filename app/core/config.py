"""
Application configuration — loaded from environment / .env file.
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # ── App ──
    app_name: str = "lending-risk-engine"
    app_env: str = "development"
    log_level: str = "INFO"

    # ── Protocol defaults (governance may override at runtime) ──
    liquidation_threshold: float = 1.2
    liquidation_penalty: float = 0.05
    partial_seizure_fraction: float = 0.95
    at_risk_collateral_ratio: float = 1.5

    # ── Lending ──
    default_offer_expiry_hours: int = 24

    # ── Market defaults (used when no market feed is wired) ──
    market_asset_price: float = 100.0
    market_volatility: float = 0.2
    market_lending_rate: float = 0.06

    # ── Price feed ──
    price_feed_url: str = ""  # empty → static in-process feed
    price_feed_timeout_seconds: float = 5.0

    # ── Liquidation scheduler ──
    liquidation_scheduler_enabled: bool = False
    liquidation_interval_seconds: int = 300

    # ── Kafka (monitoring events) ──
    kafka_bootstrap: str = "kafka:9092"
    kafka_topic_lending_events: str = "lending.monitoring.events"
    kafka_enabled: bool = False  # toggle for local dev

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
