"""
ml_scorer.py
------------
Cliente del servicio externo de scoring de ML (oráculo opaco).

  POST {ML_SERVICE_URL}/score
  body → {avg_amount_7d, tx_velocity_1h, device_change_freq, time_of_day_deviation}
  200  → {"ml_score": <number>}

Principios de diseño:
  - Una sola llamada con timeout estricto (2s por defecto). Sin reintentos
    y sin caché: la política de fallback la decide el agregador
  - Red, timeout o status no-2xx      → MLUnavailableException
  - Campo "error" (aunque sea HTTP 200),
    JSON inválido o ml_score ausente   → MLInvalidResponseException
  - El score se clampea a [0, 100]

El mapeo de features internas al contrato externo es la tabla explícita
FEATURE_MAP. Una feature nueva se agrega ahí, nunca se infiere.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from typing import Optional

import httpx

from motor_riesgo.core.config import settings
from motor_riesgo.core.exceptions import (
    MLInvalidResponseException,
    MLUnavailableException,
)
from motor_riesgo.domain.schemas import RiskFeatureVector

logger = logging.getLogger(__name__)

SCORE_PATH = "/score"


def _time_of_day_deviation(features: RiskFeatureVector) -> float:
    return abs(features.current_hour - features.usual_hour_mean)


# nombre externo → extractor sobre el vector interno
FEATURE_MAP: dict[str, Callable[[RiskFeatureVector], float]] = {
    "avg_amount_7d":         lambda f: f.avg_amount_7d,
    "tx_velocity_1h":        lambda f: f.tx_velocity_1h,
    "device_change_freq":    lambda f: f.device_change_freq,
    "time_of_day_deviation": _time_of_day_deviation,
}


def build_ml_payload(features: RiskFeatureVector) -> dict[str, float]:
    return {name: float(extract(features)) for name, extract in FEATURE_MAP.items()}


class MLScorerClient:
    """
    `transport` es inyectable para tests (httpx.MockTransport); en
    producción queda en None y httpx usa la red.
    """

    def __init__(
        self,
        base_url:    str   = settings.ML_SERVICE_URL,
        timeout_sec: float = settings.ML_TIMEOUT_SEC,
        transport:   Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url    = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self._transport  = transport

    async def score(self, features: RiskFeatureVector) -> float:
        payload = build_ml_payload(features)
        url     = f"{self.base_url}{SCORE_PATH}"

        try:
            # Tope sobre la llamada completa: el timeout de httpx es por fase
            # y el de lectura se reinicia con cada chunk recibido
            async with asyncio.timeout(self.timeout_sec):
                async with httpx.AsyncClient(
                    timeout   = self.timeout_sec,
                    transport = self._transport,
                ) as client:
                    response = await client.post(url, json=payload)
                    response.raise_for_status()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"[MLScorer] Timeout ({self.timeout_sec}s) en {url}")
            raise MLUnavailableException(
                f"Timeout del servicio de ML tras {self.timeout_sec}s."
            ) from e
        except httpx.HTTPStatusError as e:
            logger.warning(f"[MLScorer] status={e.response.status_code} en {url}")
            raise MLUnavailableException(
                f"El servicio de ML respondió con status {e.response.status_code}."
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"[MLScorer] Error de red en {url}: {e}")
            raise MLUnavailableException() from e

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> float:
        try:
            data = response.json()
        except ValueError as e:
            raise MLInvalidResponseException("El servicio de ML no devolvió JSON.") from e

        if not isinstance(data, dict):
            raise MLInvalidResponseException("Payload de ML con formato inesperado.")

        if data.get("error"):
            logger.warning(f"[MLScorer] El servicio reportó error: {data['error']}")
            raise MLInvalidResponseException(f"Error del servicio de ML: {data['error']}")

        raw = data.get("ml_score")
        # bool es subclase de int: no es un score válido
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise MLInvalidResponseException("La respuesta de ML no trae ml_score numérico.")

        if math.isnan(raw):
            raise MLInvalidResponseException("La respuesta de ML trae ml_score NaN.")

        return max(0.0, min(100.0, float(raw)))
