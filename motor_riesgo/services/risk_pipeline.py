"""
risk_pipeline.py
----------------
Orquestador del pipeline de riesgo conductual.

No contiene lógica de detección propia: arma el contexto y delega:

Flujo de ejecución (login / transacción):
  1. Contexto desde el store     → sesiones previas del usuario:
                                   velocidad, dispositivo nuevo, IP nueva
  2. Escritura en el store       → login_* / session_* / tx_*
  3. Heurística conductual       → score base + nivel (puro, < 1ms)
  4. Agregador                   → ML + historial en paralelo, barrera,
                                   max(heurístico, ML), razones, acción
  5. Historial                   → el transaction_risk (neutro = 0) se guarda
                                   para el agregado por usuario
  6. Notificaciones              → intenciones para el colaborador de entrega

Mapeo acción → status de la transacción:
  ALLOW → COMPLETED   FLAG → PENDING   BLOCK → FAILED
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from motor_riesgo.domain.schemas import (
    ActionDecision,
    DeviceFingerprint,
    NotificationIntent,
    RiskAssessment,
    RiskFeatureVector,
    RiskLevel,
    SessionRecord,
    TransactionEvaluationRequest,
    TransactionEvaluationResponse,
    TransactionStatus,
    UserRiskSummary,
)
from motor_riesgo.infrastructure.cache.risk_history import RedisRiskHistory
from motor_riesgo.services.heuristic_scorer import (
    BehaviorHeuristicScorer,
    HeuristicContext,
)
from motor_riesgo.services.notifier import DecisionNotifier
from motor_riesgo.services.risk_aggregator import EventSignals, RiskAggregator
from motor_riesgo.services.session_store import (
    LOGIN_PREFIX,
    SESSION_PREFIX,
    SessionMetadataStore,
    make_session_key,
    make_transaction_key,
)

logger = logging.getLogger(__name__)

_CONTEXT_WINDOW   = 20                  # registros previos que se miran
_VELOCITY_WINDOW  = timedelta(hours=1)

# Solo logins y sesiones cuentan para la regla rapid_sessions; los tx_*
# tienen su propia señal (tx_velocity_1h)
_SESSION_KEY_PREFIXES = (f"{LOGIN_PREFIX}_", f"{SESSION_PREFIX}_")

_STATUS_BY_ACTION = {
    ActionDecision.ALLOW: TransactionStatus.COMPLETED,
    ActionDecision.FLAG:  TransactionStatus.PENDING,
    ActionDecision.BLOCK: TransactionStatus.FAILED,
}


def _local_now() -> datetime:
    # Hora local del servidor: las reglas de horario usan hora local
    return datetime.now().astimezone()


def _device_signature(fingerprint: DeviceFingerprint) -> tuple[str, str]:
    return fingerprint.device_type.value, fingerprint.user_agent_summary


class RiskPipeline:

    def __init__(
        self,
        store:      SessionMetadataStore,
        heuristic:  BehaviorHeuristicScorer,
        aggregator: RiskAggregator,
        notifier:   DecisionNotifier,
        history:    Optional[RedisRiskHistory] = None,
        clock:      Callable[[], datetime] = _local_now,
    ):
        self.store      = store
        self.heuristic  = heuristic
        self.aggregator = aggregator
        self.notifier   = notifier
        self.history    = history
        self._clock     = clock

    # ------------------------------------------------------------------ #
    #  Entry points                                                      #
    # ------------------------------------------------------------------ #

    async def track_login(
        self,
        user_id:     str,
        fingerprint: DeviceFingerprint,
    ) -> tuple[RiskAssessment, SessionRecord]:
        now    = self._clock()
        prior  = self.store.recent_for_user(user_id, limit=_CONTEXT_WINDOW)
        record = self.store.put(make_session_key(LOGIN_PREFIX, user_id, now), fingerprint, user_id)

        assessment = await self._assess(
            event_id    = record.key,
            user_id     = user_id,
            fingerprint = fingerprint,
            prior       = prior,
            now         = now,
            features    = RiskFeatureVector(current_hour=now.hour),
            signals     = self._signals(fingerprint, prior),
        )
        return assessment, record

    def track_session(self, user_id: str, fingerprint: DeviceFingerprint) -> SessionRecord:
        """Registra metadatos de sesión sin evaluar riesgo."""
        key = make_session_key(SESSION_PREFIX, user_id, self._clock())
        return self.store.put(key, fingerprint, user_id)

    async def evaluate_transaction(
        self,
        request:     TransactionEvaluationRequest,
        fingerprint: DeviceFingerprint,
    ) -> TransactionEvaluationResponse:
        now    = self._clock()
        amount = float(request.amount)
        prior  = self.store.recent_for_user(request.user_id, limit=_CONTEXT_WINDOW)
        self.store.put(make_transaction_key(request.transaction_id), fingerprint, request.user_id)

        features = RiskFeatureVector(
            avg_amount_7d      = request.avg_amount_7d,
            tx_velocity_1h     = request.tx_velocity_1h,
            device_change_freq = self._device_change_freq(fingerprint, prior),
            current_hour       = now.hour,
            usual_hour_mean    = request.usual_hour_mean,
        )
        signals = self._signals(
            fingerprint,
            prior,
            amount         = amount,
            avg_amount_7d  = request.avg_amount_7d,
            tx_velocity_1h = request.tx_velocity_1h,
        )

        assessment = await self._assess(
            event_id    = request.transaction_id,
            user_id     = request.user_id,
            fingerprint = fingerprint,
            prior       = prior,
            now         = now,
            features    = features,
            signals     = signals,
        )

        if self.history is not None:
            await self.history.record(request.user_id, assessment.transaction_risk)

        status        = _STATUS_BY_ACTION[assessment.action]
        notifications = self._notifications(request, assessment, status)

        logger.info(
            f"[Pipeline] tx={request.transaction_id}  user={request.user_id}  "
            f"status={status.value}  notifications={len(notifications)}"
        )
        return TransactionEvaluationResponse(
            assessment    = assessment,
            status        = status,
            notifications = notifications,
        )

    async def user_summary(self, user_id: str) -> UserRiskSummary:
        return await self.aggregator.user_summary(user_id)

    def recent_sessions(self, user_id: str, limit: int = 5) -> list[SessionRecord]:
        return self.store.recent_for_user(user_id, limit=limit)

    # ------------------------------------------------------------------ #
    #  Internos                                                          #
    # ------------------------------------------------------------------ #

    async def _assess(
        self,
        event_id:    str,
        user_id:     str,
        fingerprint: DeviceFingerprint,
        prior:       list[SessionRecord],
        now:         datetime,
        features:    RiskFeatureVector,
        signals:     EventSignals,
    ) -> RiskAssessment:
        context = HeuristicContext(
            recent_session_count=sum(
                1 for r in prior
                if r.key.startswith(_SESSION_KEY_PREFIXES)
                and now - r.inserted_at <= _VELOCITY_WINDOW
            )
        )
        heuristic = self.heuristic.score(fingerprint, now, context)
        return await self.aggregator.assess(
            transaction_id = event_id,
            user_id        = user_id,
            heuristic      = heuristic,
            features       = features,
            signals        = signals,
        )

    @staticmethod
    def _signals(
        fingerprint:    DeviceFingerprint,
        prior:          list[SessionRecord],
        amount:         float = 0.0,
        avg_amount_7d:  float = 0.0,
        tx_velocity_1h: float = 0.0,
    ) -> EventSignals:
        # Sin registros previos no sabemos nada: ni "nuevo" ni "conocido"
        if prior:
            signature     = _device_signature(fingerprint)
            is_new_device   = all(_device_signature(r.fingerprint) != signature for r in prior)
            network_changed = all(
                r.fingerprint.network_origin != fingerprint.network_origin for r in prior
            )
        else:
            is_new_device   = False
            network_changed = False

        return EventSignals(
            amount          = amount,
            avg_amount_7d   = avg_amount_7d,
            tx_velocity_1h  = tx_velocity_1h,
            is_new_device   = is_new_device,
            network_changed = network_changed,
        )

    @staticmethod
    def _device_change_freq(
        fingerprint: DeviceFingerprint,
        prior:       list[SessionRecord],
    ) -> float:
        signatures = {_device_signature(r.fingerprint) for r in prior}
        signatures.add(_device_signature(fingerprint))
        return float(len(signatures) - 1)

    def _notifications(
        self,
        request:    TransactionEvaluationRequest,
        assessment: RiskAssessment,
        status:     TransactionStatus,
    ) -> list[NotificationIntent]:
        intents: list[NotificationIntent] = []

        intent = self.notifier.intent_for(
            event_type     = request.transaction_type,
            amount         = request.amount,
            description    = request.description,
            status         = status,
            reasons        = assessment.reasons,
            transaction_id = request.transaction_id,
        )
        if intent:
            intents.append(intent)

        if assessment.user_level == RiskLevel.HIGH:
            intents.append(self.notifier.flagged_user_intent(assessment.user_level))

        alert = self.notifier.high_value_alert(
            request.amount, request.transaction_type, request.transaction_id
        )
        if alert:
            intents.append(alert)

        return intents
