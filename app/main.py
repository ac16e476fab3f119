"""
Lending Risk Engine — FastAPI Application Entry Point

POST /v1/risk/assess              → stateless risk scoring
POST /v1/lending/applications     → scored loan application
POST /v1/lending/offers/{id}/accept → activate a loan
POST /v1/liquidation/run-cycle    → collateral monitoring cycle
GET  /docs                        → OpenAPI / Swagger UI
"""
import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from app.api.admin_endpoint import router as admin_router
from app.api.lending_endpoint import router as lending_router
from app.api.risk_endpoint import router as risk_router
from app.core.config import get_settings
from app.core.errors import (
    ExternalFailure,
    LendingError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from app.services.platform import get_platform
from app.services.scheduler import LiquidationScheduler

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.ConsoleRenderer() if get_settings().app_env == "development"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(get_settings().log_level.upper())),
)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("lending_engine_starting", env=settings.app_env)
    platform = get_platform()
    if platform.event_sink is not None:
        await platform.event_sink.start()
    scheduler = None
    if settings.liquidation_scheduler_enabled:
        scheduler = LiquidationScheduler(
            platform.liquidation.run_cycle,
            settings.liquidation_interval_seconds,
        )
        scheduler.start()
    yield
    if scheduler is not None:
        await scheduler.stop()
    if platform.event_sink is not None:
        await platform.event_sink.stop()
    logger.info("lending_engine_shutting_down")


app = FastAPI(
    title="Lending Risk Engine",
    description="Risk scoring, loan lifecycle and collateral liquidation for private lending",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # tighten in production
    allow_methods=["POST", "GET", "PUT", "DELETE"],
    allow_headers=["*"],
)

# ── Prometheus metrics ──
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


# ── Domain errors → HTTP ──
_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (StateConflictError, 409),
    (ExternalFailure, 502),
)


@app.exception_handler(LendingError)
async def lending_error_handler(request: Request, exc: LendingError):
    status_code = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    logger.warning(
        "request_failed",
        path=request.url.path,
        status_code=status_code,
        error_code=exc.error_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ── Routes ──
app.include_router(risk_router)
app.include_router(lending_router)
app.include_router(admin_router)


@app.get("/", include_in_schema=False)
async def root():
    return {
        "service": get_settings().app_name,
        "version": "1.0.0",
        "docs": "/docs",
        "assess": "POST /v1/risk/assess",
    }
