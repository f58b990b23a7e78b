"""
risk_history.py
---------------
Historial corto de scores de riesgo por usuario, en Redis.

Redis:
  risk:user:{user_id}:scores → LIST con los últimos N transaction_risk (más nuevo primero)
  TTL: 30 días, se refresca con cada escritura

El agregador solo necesita promedio y máximo de las transacciones
recientes del usuario. Si Redis falla o no responde dentro de
timeout_sec, el historial es "desconocido" (RiskHistory vacío): no se
penaliza ni se da por seguro. Los reintentos del pool no pueden
estirar la evaluación más allá de ese tope.
"""

import asyncio
import logging

from motor_riesgo.core.config import settings
from motor_riesgo.domain.schemas import RiskHistory
from motor_riesgo.infrastructure.cache.redis_client import RedisManager

logger = logging.getLogger(__name__)

_HISTORY_TTL = 60 * 60 * 24 * 30


class RedisRiskHistory:

    KEY = "risk:user:{user_id}:scores"

    def __init__(
        self,
        manager:     RedisManager,
        size:        int   = settings.RISK_HISTORY_SIZE,
        timeout_sec: float = settings.RISK_HISTORY_TIMEOUT_SEC,
    ):
        self.manager     = manager
        self.size        = size
        self.timeout_sec = timeout_sec

    async def get_history(self, user_id: str) -> RiskHistory:
        key = self.KEY.format(user_id=user_id)
        try:
            async with asyncio.timeout(self.timeout_sec):
                raw = await self.manager.client.lrange(key, 0, self.size - 1)
        except asyncio.TimeoutError:
            logger.warning(
                f"[RiskHistory] Timeout ({self.timeout_sec}s) leyendo user={user_id}"
            )
            return RiskHistory()
        except Exception as e:
            logger.warning(f"[RiskHistory] Redis error leyendo user={user_id}: {e}")
            return RiskHistory()

        scores = []
        for value in raw or []:
            try:
                scores.append(float(value))
            except (TypeError, ValueError):
                logger.debug(f"[RiskHistory] Valor descartado en {key}: {value!r}")

        if not scores:
            return RiskHistory()

        return RiskHistory(
            avg_transaction_risk = sum(scores) / len(scores),
            max_transaction_risk = max(scores),
            transaction_count    = len(scores),
        )

    async def record(self, user_id: str, score: float) -> None:
        key = self.KEY.format(user_id=user_id)
        try:
            async with asyncio.timeout(self.timeout_sec):
                pipe = self.manager.client.pipeline()
                pipe.lpush(key, round(float(score), 2))
                pipe.ltrim(key, 0, self.size - 1)
                pipe.expire(key, _HISTORY_TTL)
                await pipe.execute()
        except asyncio.TimeoutError:
            logger.warning(
                f"[RiskHistory] Timeout ({self.timeout_sec}s) escribiendo user={user_id}"
            )
        except Exception as e:
            logger.warning(f"[RiskHistory] Redis error escribiendo user={user_id}: {e}")
