from fastapi import APIRouter, Depends, Query

from motor_riesgo.api.dependencies import get_fingerprint, get_pipeline
from motor_riesgo.domain.schemas import (
    DeviceFingerprint,
    LoginEvaluationRequest,
    LoginEvaluationResponse,
    SessionRecordResponse,
    TransactionEvaluationRequest,
    TransactionEvaluationResponse,
    UserRiskSummary,
)
from motor_riesgo.services.risk_pipeline import RiskPipeline

router = APIRouter(prefix="/v1/risk", tags=["Risk"])


@router.post("/login", response_model=LoginEvaluationResponse)
async def evaluate_login(
    body:        LoginEvaluationRequest,
    fingerprint: DeviceFingerprint = Depends(get_fingerprint),
    pipeline:    RiskPipeline      = Depends(get_pipeline),
) -> LoginEvaluationResponse:
    """Evalúa el riesgo de un login ya autenticado y guarda sus metadatos."""
    assessment, record = await pipeline.track_login(body.user_id, fingerprint)
    return LoginEvaluationResponse(
        assessment  = assessment,
        session_key = record.key,
        fingerprint = fingerprint,
    )


@router.post("/sessions/track", response_model=SessionRecordResponse)
async def track_session(
    body:        LoginEvaluationRequest,
    fingerprint: DeviceFingerprint = Depends(get_fingerprint),
    pipeline:    RiskPipeline      = Depends(get_pipeline),
) -> SessionRecordResponse:
    record = pipeline.track_session(body.user_id, fingerprint)
    return SessionRecordResponse(
        key         = record.key,
        inserted_at = record.inserted_at,
        fingerprint = record.fingerprint,
    )


@router.post("/transactions/evaluate", response_model=TransactionEvaluationResponse)
async def evaluate_transaction(
    body:        TransactionEvaluationRequest,
    fingerprint: DeviceFingerprint = Depends(get_fingerprint),
    pipeline:    RiskPipeline      = Depends(get_pipeline),
) -> TransactionEvaluationResponse:
    return await pipeline.evaluate_transaction(body, fingerprint)


@router.get("/users/{user_id}/sessions", response_model=list[SessionRecordResponse])
async def recent_sessions(
    user_id:  str,
    limit:    int          = Query(5, ge=1, le=50),
    pipeline: RiskPipeline = Depends(get_pipeline),
) -> list[SessionRecordResponse]:
    return [
        SessionRecordResponse(
            key         = r.key,
            inserted_at = r.inserted_at,
            fingerprint = r.fingerprint,
        )
        for r in pipeline.recent_sessions(user_id, limit)
    ]


@router.get("/users/{user_id}/summary", response_model=UserRiskSummary)
async def user_summary(
    user_id:  str,
    pipeline: RiskPipeline = Depends(get_pipeline),
) -> UserRiskSummary:
    return await pipeline.user_summary(user_id)
