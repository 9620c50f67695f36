"""RiskGate FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app(): testable application factory
  - lifespan: @asynccontextmanager startup/shutdown sequence
  - /check router  : liveness (app/health.py)
  - /metrics router: Prometheus exposition (app/telemetry/router.py)
  - catch-all gateway router: app/proxy/engine.py
  - app = create_app(): module-level instance for uvicorn

Startup sequence:
  1. load_config()                 → app.state.config
  2. Authenticator                 → app.state.authenticator
  3. Geo classifier + fingerprints → app.state.risk_engine
  4. AdmissionController           → app.state.admission
  5. create_http_client()          → app.state.http_client
  6. app.state.ready = True

The telemetry recorder is created with the app (app.state.recorder) so
/metrics answers even while startup is still running.

Shutdown sequence (reverse):
  app.state.ready = False → close HTTP client → close geo database

Uvicorn hardened defaults:
  uvicorn app.main:app \\
    --host 127.0.0.1 \\
    --port 8080 \\
    --limit-concurrency 100 \\
    --backlog 50 \\
    --timeout-keep-alive 5
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.auth.authenticator import Authenticator
from app.auth.limiter import limiter
from app.config import Config, GeoConfig, load_config
from app.health import router as health_router
from app.proxy.engine import create_http_client, router as engine_router
from app.proxy.middleware import BodySizeLimitMiddleware
from app.risk.admission import AdmissionController
from app.risk.engine import RiskScoringEngine
from app.risk.fingerprint import FingerprintAnalyzer
from app.risk.geo import (
    ChainedGeoResolver,
    GeoClassifier,
    GeoResolver,
    MaxMindGeoResolver,
    StaticGeoResolver,
)
from app.telemetry.recorder import PrometheusRecorder
from app.telemetry.router import router as telemetry_router
from app.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail="RiskGate is starting up")


# ─── Component wiring ─────────────────────────────────────────────────────────


def build_geo_resolver(geo: GeoConfig) -> ChainedGeoResolver:
    """Static CIDR overrides first, then the MaxMind database (if configured)."""
    resolvers: list[GeoResolver] = []
    if geo.static:
        resolvers.append(StaticGeoResolver(geo.static))
    if geo.database:
        maxmind = MaxMindGeoResolver.open(os.path.expanduser(geo.database))
        if maxmind is not None:
            resolvers.append(maxmind)
    if not resolvers:
        logger.warning("No geo data configured; every public origin will score as unknown_geo")
    return ChainedGeoResolver(resolvers)


def build_risk_engine(config: Config, resolver: GeoResolver) -> RiskScoringEngine:
    return RiskScoringEngine(
        geo_classifier=GeoClassifier(resolver, config.risk.high_risk_regions),
        fingerprint_analyzer=FingerprintAnalyzer(config.fingerprint.scripted_signatures),
        weights=config.risk.weights,
        policy=config.risk.policy,
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown sequence."""
    logger.info("RiskGate starting up...")

    # ── Step 1: Load configuration ────────────────────────────────────────────
    # load_config() raises SystemExit on invalid config or a missing key, so the
    # process exits non-zero before ready=True is ever set.
    config: Config = load_config()
    app.state.config = config

    # ── Step 2: Credential authenticator (key loaded once, read-only) ─────────
    app.state.authenticator = Authenticator(
        config.auth.verification_key(),
        algorithm=config.auth.algorithm,
        leeway_s=config.auth.leeway_s,
    )

    # ── Step 3: Risk scoring engine ───────────────────────────────────────────
    geo_resolver = build_geo_resolver(config.geo)
    app.state.risk_engine = build_risk_engine(config, geo_resolver)

    # ── Step 4: Admission controller ──────────────────────────────────────────
    app.state.admission = AdmissionController(config.risk.thresholds)
    logger.info(
        "Risk policy loaded",
        deny_threshold=config.risk.thresholds.deny,
        flag_threshold=config.risk.thresholds.flag,
        weights=config.risk.weights.as_dict(),
        high_risk_regions=config.risk.high_risk_regions,
    )

    # ── Step 5: Shared HTTP client for backend dispatch ───────────────────────
    http_client: httpx.AsyncClient = create_http_client(config.backend.timeout_s)
    app.state.http_client = http_client
    logger.info(
        "HTTP proxy client created",
        backend=config.backend.url,
        public_prefix=config.backend.public_prefix,
        timeout_s=config.backend.timeout_s,
    )

    # ── Step 6: Mark as ready ─────────────────────────────────────────────────
    app.state.ready = True
    logger.info("RiskGate ready", host=config.proxy.host, port=config.proxy.port)

    yield

    # ── Shutdown (reverse order) ──────────────────────────────────────────────
    logger.info("RiskGate shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP proxy client closed")
    except Exception as exc:  # noqa: BLE001
        logger.warning("HTTP proxy client close error (non-fatal)", error=str(exc))

    geo_resolver.close()
    logger.info("RiskGate shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("RISKGATE_CORS_ORIGINS", "")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(cors_origins: Optional[list[str]] = None) -> FastAPI:
    """Create and configure the RiskGate FastAPI application.

    Call this function directly in tests to get an isolated app instance
    (each instance owns its own Prometheus registry):
        app = create_app()

    Args:
        cors_origins: Allowed CORS origins. Defaults to the comma-separated
                      ``RISKGATE_CORS_ORIGINS`` env var; empty disables CORS.
    """
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="RiskGate",
        description="Risk-adaptive access gateway",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # Requests arriving before startup completes get 503 from require_ready.
    application.state.ready = False
    application.state.recorder = PrometheusRecorder()

    # Rate limiter for the public credential routes, attached to app state as
    # required by slowapi.
    application.state.limiter = limiter
    application.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    origins = cors_origins if cors_origins is not None else _cors_origins_from_env()
    if origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["x-risk-score", "X-Request-ID"],
        )

    # In Starlette the LAST-added middleware is OUTERMOST: the size check runs
    # before CORS, authentication and scoring.
    application.add_middleware(BodySizeLimitMiddleware)

    # Register routers. The gateway catch-all MUST be included last.
    application.include_router(health_router)
    application.include_router(telemetry_router)
    application.include_router(engine_router, dependencies=[Depends(require_ready)])

    # Global exception handlers
    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
