from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Configuracion general
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Redis: historial de riesgo por usuario
    REDIS_URL: str = "redis://localhost:6379/0"

    # CORS: lista de orígenes permitidos separados por coma en el .env
    # Ejemplo en .env: ALLOWED_ORIGINS=http://localhost:3000,http://localhost:5173
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    # Servicio externo de ML (oráculo opaco)
    ML_SERVICE_URL: str = "http://localhost:8000"
    ML_TIMEOUT_SEC: float = 2.0

    # Store de metadatos de sesión (en memoria, efímero)
    SESSION_STORE_CAPACITY: int = 500
    SESSION_TTL_SEC: int = 60 * 60 * 24

    # Heurística conductual
    HEURISTIC_BASE_SCORE: int = 50
    UNUSUAL_HOUR_PENALTY: int = 10
    MOBILE_DEVICE_PENALTY: int = 5
    VELOCITY_PENALTY: int = 10
    VELOCITY_SESSION_THRESHOLD: int = 5
    NORMAL_HOURS_START: int = 6
    NORMAL_HOURS_END: int = 22
    HEURISTIC_HIGH_THRESHOLD: int = 70
    HEURISTIC_MEDIUM_THRESHOLD: int = 55

    # Agregación histórica (70% promedio + 30% máximo)
    AVG_RISK_WEIGHT: float = 0.7
    MAX_RISK_WEIGHT: float = 0.3
    AGGREGATE_MEDIUM_BAND: float = 40.0
    AGGREGATE_HIGH_BAND: float = 70.0
    OVERRIDE_MAX_RISK: float = 70.0
    RISK_HISTORY_SIZE: int = 10
    RISK_HISTORY_TIMEOUT_SEC: float = 0.3

    # Reglas de razones y alertas
    HIGH_AMOUNT_THRESHOLD: float = 10_000.0
    HIGH_VALUE_ALERT_AMOUNT: float = 100_000.0

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_origins(cls, v):
        """Permite definir ALLOWED_ORIGINS como string separado por comas en .env"""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("ML_SERVICE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    model_config = SettingsConfigDict(
        env_file          = ".env",
        env_file_encoding = "utf-8",
        case_sensitive    = True,
        extra             = "ignore",
    )


settings = Settings()
