"""
exceptions.py
-------------
Excepciones personalizadas del Motor de Riesgo.

Todas heredan de RiskEngineException para poder capturarlas
en un solo handler global en main.py.

Las fallas del scorer de ML NUNCA llegan al handler en el flujo normal:
el agregador las captura y degrada la evaluación (fail-open).
Solo se propagan si alguien usa el cliente de ML directamente.
"""


class RiskEngineException(Exception):
    """Base de todas las excepciones del motor."""
    status_code: int = 500
    message: str = "Error interno del motor de riesgo."

    def __init__(self, message: str | None = None):
        self.message = message or self.__class__.message
        super().__init__(self.message)


# ─────────────────────────────────────────────────────────────────────
# Errores de validación y payload
# ─────────────────────────────────────────────────────────────────────

class InvalidPayloadException(RiskEngineException):
    """El payload recibido no cumple con el esquema esperado."""
    status_code = 422
    message = "Payload de evaluación inválido."


# ─────────────────────────────────────────────────────────────────────
# Errores del scorer externo de ML
# ─────────────────────────────────────────────────────────────────────

class MLScorerException(RiskEngineException):
    """Base de las fallas del servicio externo de scoring."""
    status_code = 503
    message = "El servicio de scoring de ML falló."


class MLUnavailableException(MLScorerException):
    """Error de red, timeout o respuesta HTTP no exitosa del servicio de ML."""
    status_code = 503
    message = "El servicio de scoring de ML no está disponible."


class MLInvalidResponseException(MLScorerException):
    """El payload del servicio de ML reporta error o no trae ml_score."""
    status_code = 502
    message = "El servicio de scoring de ML devolvió una respuesta inválida."
