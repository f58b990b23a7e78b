"""
middlewares.py
--------------
Middlewares HTTP del motor de riesgo.

  DeviceFingerprintMiddleware   → deja el DeviceFingerprint en request.state
  RiskResponseHeadersMiddleware → headers de seguridad y no-cache
  setup_cors()                  → orígenes permitidos del frontend bancario

Starlette ejecuta primero el último middleware registrado; el orden de
registro está en main.py.
"""

import logging
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from motor_riesgo.services.device_metadata import fingerprint_from_request

logger = logging.getLogger(__name__)

RISK_PATH_PREFIX = "/v1/risk"

# Una evaluación de riesgo describe al usuario: nunca se cachea ni se embebe
RISK_RESPONSE_HEADERS = {
    "X-Content-Type-Options":    "nosniff",
    "X-Frame-Options":           "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy":           "no-referrer",
    "Cache-Control":             "no-store, private",
}


class DeviceFingerprintMiddleware(BaseHTTPMiddleware):
    """
    Solo las rutas de riesgo necesitan fingerprint; /health y /docs pasan
    directo. La extracción no lanza: headers ausentes → valores "Unknown".
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(RISK_PATH_PREFIX):
            fingerprint = fingerprint_from_request(request)
            request.state.fingerprint = fingerprint
            logger.debug(
                f"[Fingerprint] path={request.url.path}  "
                f"origin={fingerprint.network_origin}  "
                f"device={fingerprint.device_type.value}  "
                f"session={fingerprint.session_id}"
            )
        return await call_next(request)


class RiskResponseHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(RISK_RESPONSE_HEADERS)
        return response


def setup_cors(app: FastAPI, allowed_origins: list[str]) -> None:
    # X-Session-ID: la app puede mandar su propio id de sesión
    app.add_middleware(
        CORSMiddleware,
        allow_origins     = allowed_origins,
        allow_credentials = True,
        allow_methods     = ["GET", "POST", "OPTIONS"],
        allow_headers     = ["Content-Type", "Authorization", "X-Session-ID"],
        max_age           = 600,
    )
