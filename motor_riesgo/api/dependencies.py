"""
dependencies.py
---------------
Dependencias reutilizables para inyectar en los routers de FastAPI.

get_pipeline:
  El RiskPipeline lo construye el lifespan de main.py y vive en app.state;
  los tests pueden poner ahí una instancia aislada.

get_fingerprint:
  Fingerprint que dejó el middleware. Si el middleware no corrió
  (ej. app de test sin middlewares) se extrae en el momento.
"""

from fastapi import HTTPException, Request, status

from motor_riesgo.domain.schemas import DeviceFingerprint
from motor_riesgo.services.device_metadata import fingerprint_from_request
from motor_riesgo.services.risk_pipeline import RiskPipeline


def get_pipeline(request: Request) -> RiskPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE,
            detail      = "El motor de riesgo no está inicializado.",
        )
    return pipeline


def get_fingerprint(request: Request) -> DeviceFingerprint:
    fingerprint = getattr(request.state, "fingerprint", None)
    return fingerprint or fingerprint_from_request(request)
