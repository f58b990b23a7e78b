"""
schemas.py
----------
Schemas Pydantic del motor de riesgo: valores de dominio (fingerprint,
registro de sesión, evaluación de riesgo, intención de notificación) y
los bodies de request/response de la API.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────────────

class DeviceType(str, Enum):
    DESKTOP = "Desktop"
    MOBILE  = "Mobile"
    TABLET  = "Tablet"
    UNKNOWN = "Unknown"


class RiskLevel(str, Enum):
    LOW    = "LOW"
    MEDIUM = "MEDIUM"
    HIGH   = "HIGH"


class ActionDecision(str, Enum):
    ALLOW = "ALLOW"
    FLAG  = "FLAG"
    BLOCK = "BLOCK"


class TransactionType(str, Enum):
    TRANSFER = "TRANSFER"
    PAYMENT  = "PAYMENT"
    INCOME   = "INCOME"
    EXPENSE  = "EXPENSE"


class TransactionStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING   = "PENDING"
    FAILED    = "FAILED"


class NotificationKind(str, Enum):
    MONEY_DEDUCTED        = "MONEY_DEDUCTED"
    PAYMENT_PENDING       = "PAYMENT_PENDING"
    TRANSACTION_COMPLETED = "TRANSACTION_COMPLETED"
    USER_FLAGGED          = "USER_FLAGGED"
    SYSTEM_ALERT          = "SYSTEM_ALERT"


# ─────────────────────────────────────────────────────────────────────
# VALORES DE DOMINIO
# ─────────────────────────────────────────────────────────────────────

class DeviceFingerprint(BaseModel):
    """Snapshot inmutable del dispositivo/red de un request."""
    model_config = ConfigDict(frozen=True)

    device_type:        DeviceType = DeviceType.UNKNOWN
    network_origin:     str        = "unknown"
    user_agent_summary: str        = ""
    browser:            str        = "Unknown"
    os:                 str        = "Unknown"
    captured_at:        datetime
    session_id:         str


class SessionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    key:         str
    user_id:     str
    fingerprint: DeviceFingerprint
    inserted_at: datetime


class RiskFeatureVector(BaseModel):
    """Features efímeras que se mandan al scorer de ML en cada llamada."""
    avg_amount_7d:      float = 0.0
    tx_velocity_1h:     float = 0.0
    device_change_freq: float = 0.0
    current_hour:       int   = Field(12, ge=0, le=23)
    usual_hour_mean:    float = Field(12.0, ge=0, le=23)


class RiskHistory(BaseModel):
    """Cifras históricas de riesgo por usuario (colaborador de persistencia)."""
    avg_transaction_risk: float = 0.0
    max_transaction_risk: float = 0.0
    transaction_count:    int   = 0


class UserRiskSummary(BaseModel):
    user_id:              str
    avg_transaction_risk: float
    max_transaction_risk: float
    weighted_risk:        float
    level:                RiskLevel
    override_applied:     bool = False


class RiskAssessment(BaseModel):
    """
    primary_score    → max(heurístico, ML): de él sale `level`
    transaction_risk → riesgo propio del evento (neutro = 0), va al historial
    weighted_risk    → 0.7·avg + 0.3·max del historial: de él sale `user_level`
    """
    transaction_id:      str
    user_id:             str
    heuristic_score:     float = Field(..., ge=0, le=100)
    ml_score:            Optional[float] = Field(None, ge=0, le=100)
    primary_score:       float = Field(..., ge=0, le=100)
    transaction_risk:    float = Field(0.0, ge=0, le=100)
    historical_avg_risk: float = 0.0
    historical_max_risk: float = 0.0
    weighted_risk:       float = Field(0.0, ge=0, le=100)
    level:               RiskLevel
    user_level:          RiskLevel = RiskLevel.LOW
    action:              ActionDecision = ActionDecision.ALLOW
    ml_degraded:         bool = False
    reasons:             list[str] = Field(default_factory=list)


class NotificationIntent(BaseModel):
    kind:    NotificationKind
    title:   str
    message: str
    transaction_id: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────
# API: REQUESTS / RESPONSES
# ─────────────────────────────────────────────────────────────────────

class LoginEvaluationRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class TransactionEvaluationRequest(BaseModel):
    user_id:          str             = Field(..., min_length=1)
    transaction_id:   str             = Field(..., min_length=1)
    transaction_type: TransactionType = TransactionType.TRANSFER
    amount:           Decimal         = Field(..., gt=0)
    description:      str             = ""
    avg_amount_7d:    float           = Field(0.0, ge=0)
    tx_velocity_1h:   float           = Field(0.0, ge=0)
    usual_hour_mean:  float           = Field(12.0, ge=0, le=23)


class SessionRecordResponse(BaseModel):
    key:         str
    inserted_at: datetime
    fingerprint: DeviceFingerprint


class LoginEvaluationResponse(BaseModel):
    assessment:  RiskAssessment
    session_key: str
    fingerprint: DeviceFingerprint


class TransactionEvaluationResponse(BaseModel):
    assessment:    RiskAssessment
    status:        TransactionStatus
    notifications: list[NotificationIntent] = Field(default_factory=list)
