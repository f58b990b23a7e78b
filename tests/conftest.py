"""
Fixtures compartidas del motor de riesgo.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from motor_riesgo.domain.schemas import DeviceFingerprint, DeviceType, RiskHistory
from motor_riesgo.services.ml_scorer import MLScorerClient

# 14:00 UTC → dentro del horario normal
FIXED_NOW = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)

DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)
MOBILE_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Mobile Safari/537.36"
)


class MutableClock:
    """Reloj controlable para el store y el pipeline."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return MutableClock()


@pytest.fixture
def make_fingerprint():
    def _make(
        device_type:    DeviceType = DeviceType.DESKTOP,
        network_origin: str = "203.0.113.10",
        user_agent:     str = DESKTOP_UA,
        session_id:     str = "sess-0001",
    ) -> DeviceFingerprint:
        return DeviceFingerprint(
            device_type        = device_type,
            network_origin     = network_origin,
            user_agent_summary = user_agent,
            captured_at        = FIXED_NOW,
            session_id         = session_id,
        )
    return _make


@pytest.fixture
def make_ml_client():
    """
    Construye un MLScorerClient contra un httpx.MockTransport.
    `handler` recibe el httpx.Request y retorna un httpx.Response.
    """
    def _make(handler) -> MLScorerClient:
        return MLScorerClient(
            base_url    = "http://ml.test",
            timeout_sec = 0.5,
            transport   = httpx.MockTransport(handler),
        )
    return _make


@pytest.fixture
def ml_returning(make_ml_client):
    def _make(score: float) -> MLScorerClient:
        return make_ml_client(lambda request: httpx.Response(200, json={"ml_score": score}))
    return _make


@pytest.fixture
def ml_down(make_ml_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)
    return make_ml_client(handler)


@pytest.fixture
def make_history():
    def _make(avg: float = 0.0, max_: float = 0.0, count: int = 0):
        history = MagicMock()
        history.get_history = AsyncMock(return_value=RiskHistory(
            avg_transaction_risk = avg,
            max_transaction_risk = max_,
            transaction_count    = count,
        ))
        history.record = AsyncMock()
        return history
    return _make
