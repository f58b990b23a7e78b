"""
main.py
-------
Entry point del Motor de Riesgo Conductual.

El lifespan construye el pipeline y lo deja en app.state.pipeline:
el store de sesiones es estado del proceso que sirve HTTP, no un
global de módulo.

Orden de registro de middlewares (importa el orden, se ejecutan al revés):
  1. CORS                → primero en registrarse, último en ejecutarse
  2. RiskResponseHeaders → headers de seguridad y no-cache en todas las respuestas
  3. DeviceFingerprint   → extrae el fingerprint antes del router
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from motor_riesgo.api.middlewares import (
    DeviceFingerprintMiddleware,
    RiskResponseHeadersMiddleware,
    setup_cors,
)
from motor_riesgo.api.routers import risk
from motor_riesgo.core.config import Settings, settings
from motor_riesgo.core.exceptions import InvalidPayloadException, RiskEngineException
from motor_riesgo.infrastructure.cache.redis_client import RedisManager, redis_manager
from motor_riesgo.infrastructure.cache.risk_history import RedisRiskHistory
from motor_riesgo.services.heuristic_scorer import (
    BehaviorHeuristicScorer,
    mobile_device_rule,
    rapid_sessions_rule,
    unusual_hour_rule,
)
from motor_riesgo.services.ml_scorer import MLScorerClient
from motor_riesgo.services.notifier import DecisionNotifier
from motor_riesgo.services.risk_aggregator import RiskAggregator
from motor_riesgo.services.risk_pipeline import RiskPipeline
from motor_riesgo.services.session_store import SessionMetadataStore

logger = logging.getLogger(__name__)


def build_pipeline(config: Settings, manager: RedisManager) -> RiskPipeline:
    history = RedisRiskHistory(
        manager,
        size        = config.RISK_HISTORY_SIZE,
        timeout_sec = config.RISK_HISTORY_TIMEOUT_SEC,
    )
    return RiskPipeline(
        store      = SessionMetadataStore(
            capacity    = config.SESSION_STORE_CAPACITY,
            ttl_seconds = config.SESSION_TTL_SEC,
        ),
        heuristic  = BehaviorHeuristicScorer(
            rules      = [
                unusual_hour_rule(
                    config.UNUSUAL_HOUR_PENALTY,
                    config.NORMAL_HOURS_START,
                    config.NORMAL_HOURS_END,
                ),
                mobile_device_rule(config.MOBILE_DEVICE_PENALTY),
                rapid_sessions_rule(
                    config.VELOCITY_PENALTY,
                    config.VELOCITY_SESSION_THRESHOLD,
                ),
            ],
            base_score = config.HEURISTIC_BASE_SCORE,
            high       = config.HEURISTIC_HIGH_THRESHOLD,
            medium     = config.HEURISTIC_MEDIUM_THRESHOLD,
        ),
        aggregator = RiskAggregator(
            ml_client    = MLScorerClient(
                base_url    = config.ML_SERVICE_URL,
                timeout_sec = config.ML_TIMEOUT_SEC,
            ),
            history      = history,
            high_amount  = config.HIGH_AMOUNT_THRESHOLD,
            override_at  = config.OVERRIDE_MAX_RISK,
            avg_weight   = config.AVG_RISK_WEIGHT,
            max_weight   = config.MAX_RISK_WEIGHT,
            medium_band  = config.AGGREGATE_MEDIUM_BAND,
            high_band    = config.AGGREGATE_HIGH_BAND,
            event_high   = config.HEURISTIC_HIGH_THRESHOLD,
            event_medium = config.HEURISTIC_MEDIUM_THRESHOLD,
        ),
        notifier   = DecisionNotifier(high_value_amount=config.HIGH_VALUE_ALERT_AMOUNT),
        history    = history,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    # ── Startup ───────────────────────────────────────────────────────
    # Redis caído no impide arrancar: el historial queda "desconocido"
    await redis_manager.connect(strict=False)
    app.state.pipeline = build_pipeline(settings, redis_manager)
    logger.info(f"[Main] Pipeline listo — environment={settings.ENVIRONMENT}")
    yield
    # ── Shutdown ──────────────────────────────────────────────────────
    await redis_manager.disconnect()


app = FastAPI(
    title    = "Motor de Riesgo Conductual API",
    version  = "1.0.0",
    docs_url = "/docs"  if settings.DEBUG else None,
    redoc_url= "/redoc" if settings.DEBUG else None,
    lifespan = lifespan,
)

# ── Middlewares (registrar en este orden exacto) ──────────────────────
setup_cors(app, allowed_origins=settings.ALLOWED_ORIGINS)
app.add_middleware(RiskResponseHeadersMiddleware)
app.add_middleware(DeviceFingerprintMiddleware)

# ── Routers ───────────────────────────────────────────────────────────
app.include_router(risk.router)


# ── Handler global de excepciones ────────────────────────────────────
@app.exception_handler(RiskEngineException)
async def risk_exception_handler(
    request: Request, exc: RiskEngineException
) -> JSONResponse:
    return JSONResponse(
        status_code = exc.status_code,
        content     = {"error": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Mismo formato {"error": ...} que el resto de errores del motor
    error = InvalidPayloadException()
    return JSONResponse(
        status_code = error.status_code,
        content     = {"error": error.message, "detail": jsonable_encoder(exc.errors())},
    )


# ── Health check ──────────────────────────────────────────────────────
@app.get("/health")
async def health_check():
    redis_ok = await redis_manager.ping()
    return {
        "status":      "ok",
        "environment": settings.ENVIRONMENT,
        "redis":       "ok" if redis_ok else "degraded",
    }
