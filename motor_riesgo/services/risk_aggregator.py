"""
risk_aggregator.py
------------------
Agregador de riesgo: combina el score heurístico, el score de ML y las
cifras históricas del usuario en una evaluación accionable.

Dos cálculos:

  1. Evento en tiempo real (login / transacción)
       primary = max(heurístico, ML)   → una señal fuerte no se diluye
       level   = HIGH si primary > 70, MEDIUM si > 55, si no LOW
       transaction_risk = max(penalizaciones heurísticas, ML): lo que se
       guarda en el historial. Un evento sin señales vale 0, no 50
     El score de ML y la llamada al historial corren en paralelo
     (asyncio.gather); la evaluación solo se emite cuando ambos
     resolvieron o fallaron.

  2. Agregado por usuario (dashboards, "¿este usuario es riesgoso?")
       weighted = 0.7 · avg + 0.3 · max
       OVERRIDE: max >= 70 → HIGH, se evalúa ANTES de las bandas
       bandas:   < 40 LOW, 40-69 MEDIUM, >= 70 HIGH
     El override solo fuerza la banda; el weighted se reporta intacto.

Fail-open: si el ML falla la evaluación sigue con el heurístico solo y
se marca "ML-degraded" en reasons. Una falla de ML nunca bloquea el
login o la transacción, y el score de ML por sí solo nunca produce BLOCK.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional, Protocol

from motor_riesgo.core.config import settings
from motor_riesgo.domain.schemas import (
    ActionDecision,
    RiskAssessment,
    RiskFeatureVector,
    RiskHistory,
    RiskLevel,
    UserRiskSummary,
)
from motor_riesgo.services.heuristic_scorer import (
    RULE_UNUSUAL_HOUR,
    HeuristicResult,
    classify_heuristic,
    clamp_score,
)
from motor_riesgo.services.ml_scorer import MLScorerClient

logger = logging.getLogger(__name__)

AMOUNT_SPIKE_RATIO     = 3.0
HIGH_VELOCITY_1H       = 5
HIGH_ML_SCORE          = 70.0

REASON_AMOUNT_SPIKE    = "Amount > 3x daily average"
REASON_NEW_DEVICE      = "New device + high amount"
REASON_HIGH_VELOCITY   = "High transaction velocity"
REASON_GEO_IP_MISMATCH = "Geo/IP mismatch"
REASON_UNUSUAL_HOUR    = "Unusual activity hour"
REASON_HIGH_ML_SCORE   = "High ML risk score"
REASON_HISTORICAL_HIGH = "Previous high-risk transaction"
REASON_ML_DEGRADED     = "ML-degraded: heuristic score only"


class RiskHistoryProvider(Protocol):
    async def get_history(self, user_id: str) -> RiskHistory: ...


@dataclass(frozen=True)
class EventSignals:
    """Señales del evento que alimentan el catálogo de razones."""
    amount:          float = 0.0
    avg_amount_7d:   float = 0.0
    tx_velocity_1h:  float = 0.0
    is_new_device:   bool  = False
    network_changed: bool  = False


@dataclass(frozen=True)
class ReasonInput:
    signals:     EventSignals
    heuristic:   HeuristicResult
    ml_score:    Optional[float]
    history:     RiskHistory
    high_amount: float
    override_at: float

    @property
    def ml_degraded(self) -> bool:
        return self.ml_score is None


@dataclass(frozen=True)
class ReasonRule:
    name:   str
    reason: str
    fires:  Callable[[ReasonInput], bool]


# Catálogo fijo: el orden de la lista es el orden en que aparecen las razones
REASON_CATALOGUE: tuple[ReasonRule, ...] = (
    ReasonRule(
        "amount_spike", REASON_AMOUNT_SPIKE,
        lambda r: r.signals.avg_amount_7d > 0
        and r.signals.amount > AMOUNT_SPIKE_RATIO * r.signals.avg_amount_7d,
    ),
    ReasonRule(
        "new_device_high_amount", REASON_NEW_DEVICE,
        lambda r: r.signals.is_new_device and r.signals.amount >= r.high_amount,
    ),
    ReasonRule(
        "high_velocity", REASON_HIGH_VELOCITY,
        lambda r: r.signals.tx_velocity_1h > HIGH_VELOCITY_1H,
    ),
    ReasonRule(
        "geo_ip_mismatch", REASON_GEO_IP_MISMATCH,
        lambda r: r.signals.network_changed,
    ),
    ReasonRule(
        "unusual_hour", REASON_UNUSUAL_HOUR,
        lambda r: RULE_UNUSUAL_HOUR in r.heuristic.fired_rules,
    ),
    ReasonRule(
        "high_ml_score", REASON_HIGH_ML_SCORE,
        lambda r: r.ml_score is not None and r.ml_score >= HIGH_ML_SCORE,
    ),
    ReasonRule(
        "historical_outlier", REASON_HISTORICAL_HIGH,
        lambda r: r.history.max_transaction_risk >= r.override_at,
    ),
    ReasonRule(
        "ml_degraded", REASON_ML_DEGRADED,
        lambda r: r.ml_degraded,
    ),
)


def collect_reasons(
    data:      ReasonInput,
    catalogue: tuple[ReasonRule, ...] = REASON_CATALOGUE,
) -> list[str]:
    return [rule.reason for rule in catalogue if rule.fires(data)]


def classify_aggregate(
    avg_risk:    float,
    max_risk:    float,
    avg_weight:  float = settings.AVG_RISK_WEIGHT,
    max_weight:  float = settings.MAX_RISK_WEIGHT,
    medium_band: float = settings.AGGREGATE_MEDIUM_BAND,
    high_band:   float = settings.AGGREGATE_HIGH_BAND,
    override_at: float = settings.OVERRIDE_MAX_RISK,
) -> tuple[float, RiskLevel, bool]:
    """
    Retorna (weighted, level, override_applied).
    El override se chequea primero: un outlier severo no se suaviza
    con muchas transacciones benignas.
    """
    avg_risk = clamp_score(avg_risk)
    max_risk = clamp_score(max_risk)
    weighted = round(avg_weight * avg_risk + max_weight * max_risk, 2)

    if max_risk >= override_at:
        return weighted, RiskLevel.HIGH, True
    if weighted >= high_band:
        return weighted, RiskLevel.HIGH, False
    if weighted >= medium_band:
        return weighted, RiskLevel.MEDIUM, False
    return weighted, RiskLevel.LOW, False


class RiskAggregator:

    def __init__(
        self,
        ml_client:    MLScorerClient,
        history:      Optional[RiskHistoryProvider] = None,
        high_amount:  float = settings.HIGH_AMOUNT_THRESHOLD,
        override_at:  float = settings.OVERRIDE_MAX_RISK,
        avg_weight:   float = settings.AVG_RISK_WEIGHT,
        max_weight:   float = settings.MAX_RISK_WEIGHT,
        medium_band:  float = settings.AGGREGATE_MEDIUM_BAND,
        high_band:    float = settings.AGGREGATE_HIGH_BAND,
        event_high:   int   = settings.HEURISTIC_HIGH_THRESHOLD,
        event_medium: int   = settings.HEURISTIC_MEDIUM_THRESHOLD,
    ):
        self.ml_client    = ml_client
        self.history      = history
        self.high_amount  = high_amount
        self.override_at  = override_at
        self.avg_weight   = avg_weight
        self.max_weight   = max_weight
        self.medium_band  = medium_band
        self.high_band    = high_band
        self.event_high   = event_high
        self.event_medium = event_medium

    # ------------------------------------------------------------------ #
    #  Agregado por usuario                                              #
    # ------------------------------------------------------------------ #

    def summarize(self, user_id: str, history: RiskHistory) -> UserRiskSummary:
        weighted, level, override = classify_aggregate(
            history.avg_transaction_risk,
            history.max_transaction_risk,
            avg_weight  = self.avg_weight,
            max_weight  = self.max_weight,
            medium_band = self.medium_band,
            high_band   = self.high_band,
            override_at = self.override_at,
        )
        return UserRiskSummary(
            user_id              = user_id,
            avg_transaction_risk = history.avg_transaction_risk,
            max_transaction_risk = history.max_transaction_risk,
            weighted_risk        = weighted,
            level                = level,
            override_applied     = override,
        )

    async def user_summary(self, user_id: str) -> UserRiskSummary:
        return self.summarize(user_id, await self._fetch_history(user_id))

    # ------------------------------------------------------------------ #
    #  Evento en tiempo real                                             #
    # ------------------------------------------------------------------ #

    async def assess(
        self,
        transaction_id: str,
        user_id:        str,
        heuristic:      HeuristicResult,
        features:       RiskFeatureVector,
        signals:        EventSignals | None = None,
    ) -> RiskAssessment:
        signals = signals or EventSignals()

        # Barrera: ML e historial en paralelo, se espera a ambos
        ml_result, history = await asyncio.gather(
            self.ml_client.score(features),
            self._fetch_history(user_id),
            return_exceptions=True,
        )

        ml_score = self._resolve_ml(ml_result, transaction_id)
        if isinstance(history, BaseException):
            logger.error(f"[Aggregator] Historial falló user={user_id}: {history}")
            history = RiskHistory()

        primary = heuristic.score if ml_score is None else max(heuristic.score, ml_score)
        primary = clamp_score(primary)
        tx_risk = heuristic.risk_points if ml_score is None else max(heuristic.risk_points, ml_score)
        level   = classify_heuristic(primary, self.event_high, self.event_medium)
        summary = self.summarize(user_id, history)
        action  = self._decide(level, heuristic.level, summary.level)

        reasons = collect_reasons(ReasonInput(
            signals     = signals,
            heuristic   = heuristic,
            ml_score    = ml_score,
            history     = history,
            high_amount = self.high_amount,
            override_at = self.override_at,
        ))

        assessment = RiskAssessment(
            transaction_id      = transaction_id,
            user_id             = user_id,
            heuristic_score     = heuristic.score,
            ml_score            = ml_score,
            historical_avg_risk = history.avg_transaction_risk,
            historical_max_risk = history.max_transaction_risk,
            primary_score       = primary,
            transaction_risk    = clamp_score(tx_risk),
            weighted_risk       = summary.weighted_risk,
            level               = level,
            user_level          = summary.level,
            action              = action,
            ml_degraded         = ml_score is None,
            reasons             = reasons,
        )

        logger.info(
            f"[Aggregator] DECISION — tx={transaction_id}  user={user_id}  "
            f"heuristic={heuristic.score}  ml={ml_score}  primary={primary}  "
            f"tx_risk={assessment.transaction_risk}  level={level.value}  "
            f"user_level={summary.level.value}  action={action.value}  "
            f"reasons={reasons}"
        )
        return assessment

    def _resolve_ml(self, result, transaction_id: str) -> Optional[float]:
        if isinstance(result, BaseException):
            # Fail-open: la evaluación sigue con el heurístico
            logger.warning(
                f"[Aggregator] ML degradado tx={transaction_id}: "
                f"{type(result).__name__}: {result}"
            )
            return None
        return result

    async def _fetch_history(self, user_id: str) -> RiskHistory:
        if self.history is None:
            return RiskHistory()
        return await self.history.get_history(user_id)

    @staticmethod
    def _decide(
        level:           RiskLevel,
        heuristic_level: RiskLevel,
        user_level:      RiskLevel,
    ) -> ActionDecision:
        if level == RiskLevel.HIGH and heuristic_level == RiskLevel.HIGH:
            action = ActionDecision.BLOCK
        elif level in (RiskLevel.HIGH, RiskLevel.MEDIUM):
            # HIGH que solo viene del ML → revisión, no bloqueo
            action = ActionDecision.FLAG
        else:
            action = ActionDecision.ALLOW

        if user_level == RiskLevel.HIGH and action == ActionDecision.ALLOW:
            action = ActionDecision.FLAG
        return action
