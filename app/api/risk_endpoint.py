"""
POST /v1/risk/assess

Stateless scoring: request → score → response. Nothing is persisted;
loan applications are scored through /v1/lending/applications instead.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter

from app.core.metrics import risk_assessments
from app.schemas.risk_request import RiskFactors
from app.schemas.risk_response import RiskAssessmentResult
from app.scoring.engine import assess_risk

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/risk", tags=["risk"])


@router.post(
    "/assess",
    response_model=RiskAssessmentResult,
    summary="Score a prospective loan",
    description="Pure risk assessment: composite score, approval, pricing and collateral requirement.",
)
def assess(request: RiskFactors) -> RiskAssessmentResult:
    result = assess_risk(request)
    risk_assessments.labels(
        risk_level=result.risk_level.value,
        approved=str(result.approved).lower(),
    ).inc()
    logger.info(
        "risk_assessment_served",
        score=result.risk_score,
        level=result.risk_level.value,
        approved=result.approved,
    )
    return result


@router.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "service": "lending-risk-engine"}
