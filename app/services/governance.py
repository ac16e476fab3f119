"""
Governance-controlled protocol parameters.

Voting lives elsewhere; this holds the currently effective values. Readers
take an immutable snapshot() at the start of an operation or monitoring
cycle, so a parameter change mid-cycle never affects in-flight checks.
"""
from __future__ import annotations

import threading

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from app.core.config import Settings
from app.core.errors import ValidationError

logger = structlog.get_logger()


class ProtocolParameters(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    liquidation_threshold: float = Field(1.2, gt=1.0, description="Collateral ratio below which loans are liquidated")
    liquidation_penalty: float = Field(0.05, ge=0, lt=1)
    partial_seizure_fraction: float = Field(0.95, gt=0, le=1, description="Share of collateral seized on partial liquidation")
    at_risk_collateral_ratio: float = Field(1.5, gt=1.0)
    emergency_pause: bool = Field(False, description="Blocks new applications and offers")


class GovernanceParameters:
    def __init__(self, initial: ProtocolParameters | None = None):
        self._lock = threading.Lock()
        self._current = initial or ProtocolParameters()

    @classmethod
    def from_settings(cls, settings: Settings) -> "GovernanceParameters":
        return cls(ProtocolParameters(
            liquidation_threshold=settings.liquidation_threshold,
            liquidation_penalty=settings.liquidation_penalty,
            partial_seizure_fraction=settings.partial_seizure_fraction,
            at_risk_collateral_ratio=settings.at_risk_collateral_ratio,
        ))

    def snapshot(self) -> ProtocolParameters:
        with self._lock:
            return self._current

    def update(self, **changes) -> ProtocolParameters:
        with self._lock:
            merged = {**self._current.model_dump(), **changes}
            try:
                updated = ProtocolParameters(**merged)
            except PydanticValidationError as e:
                first = e.errors()[0]
                field = ".".join(str(p) for p in first["loc"]) or "parameters"
                raise ValidationError(field, first["msg"]) from e
            self._current = updated

        logger.info("protocol_parameters_updated", changes=changes)
        return updated
