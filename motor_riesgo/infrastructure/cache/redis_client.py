"""
redis_client.py
---------------
Conexión a Redis del motor de riesgo.

En Redis solo vive el historial corto de scores por usuario
(risk_history.py). El store de sesiones es memoria del proceso.

Redis no es crítico para decidir: si no responde, el historial queda
"desconocido" y el motor sigue evaluando. Por eso el lifespan conecta
con strict=False y /health lo reporta como "degraded".
"""

import asyncio
import logging

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError

from motor_riesgo.core.config import settings

logger = logging.getLogger(__name__)

_PING_TIMEOUT_SEC = 2.0


class RedisManager:
    """
    Pool asyncio con reintentos acotados para errores transitorios de red.
    Los timeouts son cortos: una lectura de historial lenta no puede
    retrasar la evaluación más que el propio scorer de ML.
    """

    def __init__(self, url: str = settings.REDIS_URL):
        self.url = url
        self.client: redis.Redis | None = None
        self._connected: bool = False

    @property
    def is_connected(self) -> bool:
        return self._connected and self.client is not None

    async def connect(self, strict: bool = True) -> None:
        """
        strict=True  → si el PING falla, la excepción sube
        strict=False → el cliente queda creado y el estado marcado degradado
        """
        logger.info(f"[Redis] Conectando a {self.url}")

        self.client = redis.Redis.from_url(
            self.url,
            max_connections        = 50,
            socket_timeout         = 0.5,
            socket_connect_timeout = 2.0,
            health_check_interval  = 30,
            decode_responses       = True,
            retry_on_timeout       = True,
            retry                  = Retry(
                backoff          = ExponentialBackoff(cap=0.5, base=0.1),
                retries          = 2,
                supported_errors = (ConnectionError, TimeoutError, BusyLoadingError),
            ),
        )

        self._connected = await self._health_check(raise_on_fail=strict)
        if self._connected:
            logger.info("[Redis] Conectado, historial de riesgo disponible")
        else:
            logger.warning("[Redis] Sin conexión: el historial de riesgo se tratará como desconocido")

    async def disconnect(self) -> None:
        if self.client is None:
            return
        try:
            await self.client.aclose()
            logger.info("[Redis] Pool cerrado")
        except Exception as e:
            logger.error(f"[Redis] Error cerrando el pool: {e}")
        finally:
            self._connected = False

    async def _health_check(self, raise_on_fail: bool = False) -> bool:
        try:
            if await asyncio.wait_for(self.client.ping(), timeout=_PING_TIMEOUT_SEC):
                return True
            raise ConnectionError("PING sin respuesta")
        except asyncio.TimeoutError:
            logger.error(f"[Redis] PING sin respuesta en {_PING_TIMEOUT_SEC}s url={self.url}")
            if raise_on_fail:
                raise ConnectionError(f"Redis no respondió en {_PING_TIMEOUT_SEC}s")
            return False
        except Exception as e:
            logger.error(f"[Redis] Health check falló url={self.url}: {e}")
            if raise_on_fail:
                raise
            return False

    async def ping(self) -> bool:
        """Usado por /health; nunca lanza."""
        if self.client is None:
            return False
        return await self._health_check(raise_on_fail=False)


# Lo conecta y desconecta el lifespan de main.py
redis_manager = RedisManager()
