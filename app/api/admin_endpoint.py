"""
Admin API — liquidation operations + protocol parameters.

Endpoints:
  POST /v1/liquidation/run-cycle
    → Run one monitoring cycle on demand (same job the scheduler runs)

  GET  /v1/liquidation/status
    → At-risk / critical counts over all active loans (read-only)

  POST /v1/liquidation/loans/{loan_id}/trigger
    → Manually liquidate a loan that is currently below threshold

  GET  /v1/liquidation/history
  GET  /v1/liquidation/events

  GET/PUT /v1/governance/parameters
    → Governance-controlled protocol parameters
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.schemas.lending import ActiveLoan
from app.schemas.liquidation import LiquidationCheck, LiquidationResult, LiquidationStatus
from app.services.governance import ProtocolParameters
from app.services.platform import Platform, get_platform

logger = structlog.get_logger()
router = APIRouter(prefix="/v1", tags=["admin"])


class CycleResponse(BaseModel):
    loans_checked: int
    flagged: int
    checks: list[LiquidationCheck]


class ParameterUpdate(BaseModel):
    liquidation_threshold: Optional[float] = None
    liquidation_penalty: Optional[float] = None
    partial_seizure_fraction: Optional[float] = None
    at_risk_collateral_ratio: Optional[float] = None
    emergency_pause: Optional[bool] = None


@router.post(
    "/liquidation/run-cycle",
    response_model=CycleResponse,
    summary="Run one liquidation monitoring cycle",
    description=(
        "Checks every active loan's collateral ratio and liquidates the ones "
        "below threshold. Normally triggered by the scheduler every few minutes."
    ),
)
async def run_cycle(platform: Platform = Depends(get_platform)):
    logger.info("liquidation_cycle_triggered")
    # Synchronous cycle runs in a worker thread to keep the event loop free
    checks = await asyncio.to_thread(platform.liquidation.run_cycle)
    return CycleResponse(
        loans_checked=len(checks),
        flagged=sum(1 for c in checks if c.needs_liquidation),
        checks=checks,
    )


@router.get("/liquidation/status", response_model=LiquidationStatus)
def liquidation_status(platform: Platform = Depends(get_platform)):
    return platform.liquidation.liquidation_status()


@router.post("/liquidation/loans/{loan_id}/trigger", response_model=LiquidationResult)
def trigger_liquidation(loan_id: str, platform: Platform = Depends(get_platform)):
    logger.info("manual_liquidation_requested", loan_id=loan_id)
    return platform.liquidation.trigger_liquidation(loan_id)


@router.get("/liquidation/history", response_model=list[ActiveLoan])
def liquidation_history(limit: int = 50, platform: Platform = Depends(get_platform)):
    return platform.liquidation.liquidation_history(limit)


@router.get("/liquidation/events")
def liquidation_events(limit: int = 50, platform: Platform = Depends(get_platform)) -> list[dict[str, Any]]:
    return platform.events.recent(limit=limit)


@router.get("/governance/parameters", response_model=ProtocolParameters)
def get_parameters(platform: Platform = Depends(get_platform)):
    return platform.governance.snapshot()


@router.put("/governance/parameters", response_model=ProtocolParameters)
def update_parameters(body: ParameterUpdate, platform: Platform = Depends(get_platform)):
    changes = body.model_dump(exclude_none=True)
    logger.info("protocol_parameters_update_requested", changes=changes)
    return platform.governance.update(**changes)
