"""
Tests del agregador de riesgo: agregado por usuario, evaluación en
tiempo real, fail-open del ML y catálogo de razones.
"""

import asyncio

import pytest

from motor_riesgo.domain.schemas import (
    ActionDecision,
    RiskFeatureVector,
    RiskHistory,
    RiskLevel,
)
from motor_riesgo.services.heuristic_scorer import (
    RULE_UNUSUAL_HOUR,
    HeuristicResult,
    classify_heuristic,
)
from motor_riesgo.services.risk_aggregator import (
    REASON_AMOUNT_SPIKE,
    REASON_GEO_IP_MISMATCH,
    REASON_HIGH_ML_SCORE,
    REASON_HIGH_VELOCITY,
    REASON_HISTORICAL_HIGH,
    REASON_ML_DEGRADED,
    REASON_NEW_DEVICE,
    REASON_UNUSUAL_HOUR,
    EventSignals,
    RiskAggregator,
    classify_aggregate,
)


def heuristic(score: float, fired=()) -> HeuristicResult:
    return HeuristicResult(score=score, level=classify_heuristic(score), fired_rules=list(fired))


class TestClassifyAggregate:

    def test_override_forces_high_with_low_average(self):
        weighted, level, override = classify_aggregate(10, 85)

        assert weighted == pytest.approx(32.5)
        assert level == RiskLevel.HIGH
        assert override is True

    def test_flat_history_is_medium(self):
        weighted, level, override = classify_aggregate(50, 50)

        assert weighted == pytest.approx(50.0)
        assert level == RiskLevel.MEDIUM
        assert override is False

    @pytest.mark.parametrize("avg,max_,expected", [
        (0, 0, RiskLevel.LOW),
        (39.9, 39.9, RiskLevel.LOW),
        (40, 40, RiskLevel.MEDIUM),
        (60, 69, RiskLevel.MEDIUM),
        (69.9, 69.9, RiskLevel.MEDIUM),
        (70, 70, RiskLevel.HIGH),
        (5, 70, RiskLevel.HIGH),
    ])
    def test_band_boundaries(self, avg, max_, expected):
        assert classify_aggregate(avg, max_)[1] == expected

    def test_weighted_is_rounded_to_two_decimals(self):
        weighted, _, _ = classify_aggregate(33.333, 12.345)
        assert weighted == round(0.7 * 33.333 + 0.3 * 12.345, 2)


class TestUserSummary:

    @pytest.mark.asyncio
    async def test_summary_uses_history_provider(self, ml_returning, make_history):
        aggregator = RiskAggregator(ml_returning(0), history=make_history(10, 85, 4))
        summary    = await aggregator.user_summary("u1")

        assert summary.user_id == "u1"
        assert summary.level == RiskLevel.HIGH
        assert summary.override_applied is True
        assert summary.weighted_risk == pytest.approx(32.5)

    @pytest.mark.asyncio
    async def test_without_history_user_is_low(self, ml_returning):
        summary = await RiskAggregator(ml_returning(0)).user_summary("u1")
        assert summary.level == RiskLevel.LOW
        assert summary.weighted_risk == 0


class TestAssess:

    @pytest.mark.asyncio
    async def test_low_risk_is_allowed(self, ml_returning):
        result = await RiskAggregator(ml_returning(20)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )

        assert result.level == RiskLevel.LOW
        assert result.action == ActionDecision.ALLOW
        assert result.ml_score == 20
        assert result.ml_degraded is False
        assert result.primary_score == 50
        assert result.reasons == []

    @pytest.mark.asyncio
    async def test_strong_ml_signal_is_not_diluted(self, ml_returning):
        result = await RiskAggregator(ml_returning(90)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )

        assert result.primary_score == 90
        assert result.level == RiskLevel.HIGH
        # Solo el ML dice HIGH → revisión, nunca bloqueo
        assert result.action == ActionDecision.FLAG
        assert REASON_HIGH_ML_SCORE in result.reasons

    @pytest.mark.asyncio
    async def test_heuristic_and_event_high_blocks(self, ml_returning):
        result = await RiskAggregator(ml_returning(10)).assess(
            "tx1", "u1", heuristic(75, [RULE_UNUSUAL_HOUR]), RiskFeatureVector()
        )

        assert result.level == RiskLevel.HIGH
        assert result.action == ActionDecision.BLOCK
        assert REASON_UNUSUAL_HOUR in result.reasons

    @pytest.mark.asyncio
    async def test_medium_is_flagged(self, ml_returning):
        result = await RiskAggregator(ml_returning(60)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )
        assert result.level == RiskLevel.MEDIUM
        assert result.action == ActionDecision.FLAG

    @pytest.mark.asyncio
    async def test_ml_failure_degrades_to_heuristic(self, ml_down):
        result = await RiskAggregator(ml_down).assess(
            "tx1", "u1", heuristic(65), RiskFeatureVector()
        )

        assert result.ml_score is None
        assert result.ml_degraded is True
        assert result.primary_score == 65
        assert result.level == RiskLevel.MEDIUM
        assert result.reasons[-1] == REASON_ML_DEGRADED

    @pytest.mark.asyncio
    async def test_ml_failure_never_blocks_low_heuristic(self, ml_down):
        result = await RiskAggregator(ml_down).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )
        assert result.action == ActionDecision.ALLOW

    @pytest.mark.asyncio
    async def test_high_risk_user_turns_allow_into_flag(self, ml_returning, make_history):
        aggregator = RiskAggregator(ml_returning(10), history=make_history(20, 90, 3))
        result     = await aggregator.assess("tx1", "u1", heuristic(50), RiskFeatureVector())

        assert result.level == RiskLevel.LOW
        assert result.user_level == RiskLevel.HIGH
        assert result.action == ActionDecision.FLAG
        assert result.historical_max_risk == 90
        assert REASON_HISTORICAL_HIGH in result.reasons

    @pytest.mark.asyncio
    async def test_history_failure_is_treated_as_unknown(self, ml_returning, make_history):
        history = make_history()
        history.get_history.side_effect = RuntimeError("redis down")

        result = await RiskAggregator(ml_returning(10), history=history).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )

        assert result.historical_avg_risk == 0
        assert result.user_level == RiskLevel.LOW
        assert result.action == ActionDecision.ALLOW

    @pytest.mark.asyncio
    async def test_ml_and_history_run_concurrently(self, make_history):
        started = asyncio.Event()

        class SlowML:
            async def score(self, features):
                started.set()
                await asyncio.sleep(0)
                return 30.0

        history = make_history()

        async def get_history(user_id):
            # El historial espera a que el ML haya arrancado
            await asyncio.wait_for(started.wait(), timeout=1)
            return RiskHistory()

        history.get_history.side_effect = get_history
        result = await RiskAggregator(SlowML(), history=history).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )
        assert result.ml_score == 30.0


class TestReasons:

    @pytest.mark.asyncio
    async def test_catalogue_order_is_stable(self, ml_returning, make_history):
        signals = EventSignals(
            amount          = 50000,
            avg_amount_7d   = 1000,
            tx_velocity_1h  = 8,
            is_new_device   = True,
            network_changed = True,
        )
        aggregator = RiskAggregator(ml_returning(80), history=make_history(30, 75, 2))
        result     = await aggregator.assess(
            "tx1", "u1", heuristic(60, [RULE_UNUSUAL_HOUR]), RiskFeatureVector(), signals
        )

        assert result.reasons == [
            REASON_AMOUNT_SPIKE,
            REASON_NEW_DEVICE,
            REASON_HIGH_VELOCITY,
            REASON_GEO_IP_MISMATCH,
            REASON_UNUSUAL_HOUR,
            REASON_HIGH_ML_SCORE,
            REASON_HISTORICAL_HIGH,
        ]

    @pytest.mark.asyncio
    async def test_new_device_needs_high_amount(self, ml_returning):
        signals = EventSignals(amount=500, is_new_device=True)
        result  = await RiskAggregator(ml_returning(10)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector(), signals
        )
        assert REASON_NEW_DEVICE not in result.reasons

    @pytest.mark.asyncio
    async def test_amount_spike_needs_known_average(self, ml_returning):
        signals = EventSignals(amount=5000, avg_amount_7d=0)
        result  = await RiskAggregator(ml_returning(10)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector(), signals
        )
        assert REASON_AMOUNT_SPIKE not in result.reasons


class TestRecordedFigures:

    @pytest.mark.asyncio
    async def test_neutral_event_has_zero_transaction_risk(self, ml_returning):
        result = await RiskAggregator(ml_returning(0)).assess(
            "tx1", "u1", heuristic(50), RiskFeatureVector()
        )

        assert result.primary_score == 50
        assert result.transaction_risk == 0

    @pytest.mark.asyncio
    async def test_transaction_risk_takes_larger_of_penalties_and_ml(self, ml_returning, ml_down):
        penalized = HeuristicResult(
            score=65, level=RiskLevel.MEDIUM, fired_rules=[RULE_UNUSUAL_HOUR], risk_points=15,
        )

        with_ml  = await RiskAggregator(ml_returning(40)).assess("tx1", "u1", penalized, RiskFeatureVector())
        degraded = await RiskAggregator(ml_down).assess("tx2", "u1", penalized, RiskFeatureVector())

        assert with_ml.transaction_risk == 40
        assert degraded.transaction_risk == 15

    @pytest.mark.asyncio
    async def test_weighted_risk_is_user_blend(self, ml_returning, make_history):
        aggregator = RiskAggregator(ml_returning(20), history=make_history(50, 50, 5))
        result     = await aggregator.assess("tx1", "u1", heuristic(50), RiskFeatureVector())

        assert result.weighted_risk == pytest.approx(50.0)
        assert result.user_level == RiskLevel.MEDIUM
        assert result.level == RiskLevel.LOW
