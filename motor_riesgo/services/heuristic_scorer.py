"""
heuristic_scorer.py
-------------------
Score heurístico conductual: parte de un score neutro (50) y suma
penalizaciones de un registro de reglas con nombre.

Reglas por defecto:
  unusual_hour   → +10 si la hora local es < 06:00 o > 22:00
  mobile_device  → +5  si el dispositivo es Mobile (decisión de política:
                   se considera una señal de identidad más débil que Desktop)
  rapid_sessions → +10 si el usuario abrió >= 5 sesiones en la última hora

Clasificación: HIGH si score > 70, MEDIUM si score > 55, si no LOW.

La función es determinística y sin efectos secundarios: el reloj y el
contexto llegan como parámetros.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from motor_riesgo.core.config import settings
from motor_riesgo.domain.schemas import DeviceFingerprint, DeviceType, RiskLevel

RULE_UNUSUAL_HOUR   = "unusual_hour"
RULE_MOBILE_DEVICE  = "mobile_device"
RULE_RAPID_SESSIONS = "rapid_sessions"


@dataclass(frozen=True)
class HeuristicContext:
    """Señales de contexto que no salen del fingerprint."""
    recent_session_count: int = 0


@dataclass(frozen=True)
class HeuristicRule:
    """
    Regla con nombre. `applies` decide si dispara; `penalty` es lo que suma.
    """
    name:    str
    penalty: int
    applies: Callable[[DeviceFingerprint, datetime, HeuristicContext], bool]


@dataclass
class HeuristicResult:
    score:       float
    level:       RiskLevel
    fired_rules: list[str] = field(default_factory=list)
    # Suma de penalizaciones sobre el score base: 0 si no disparó nada
    risk_points: float = 0.0


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def is_unusual_hour(
    hour:  int,
    start: int = settings.NORMAL_HOURS_START,
    end:   int = settings.NORMAL_HOURS_END,
) -> bool:
    return hour < start or hour > end


def unusual_hour_rule(
    penalty: int = settings.UNUSUAL_HOUR_PENALTY,
    start:   int = settings.NORMAL_HOURS_START,
    end:     int = settings.NORMAL_HOURS_END,
) -> HeuristicRule:
    return HeuristicRule(
        name    = RULE_UNUSUAL_HOUR,
        penalty = penalty,
        applies = lambda fp, now, ctx: is_unusual_hour(now.hour, start, end),
    )


def mobile_device_rule(penalty: int = settings.MOBILE_DEVICE_PENALTY) -> HeuristicRule:
    return HeuristicRule(
        name    = RULE_MOBILE_DEVICE,
        penalty = penalty,
        applies = lambda fp, now, ctx: fp.device_type == DeviceType.MOBILE,
    )


def rapid_sessions_rule(
    penalty:   int = settings.VELOCITY_PENALTY,
    threshold: int = settings.VELOCITY_SESSION_THRESHOLD,
) -> HeuristicRule:
    return HeuristicRule(
        name    = RULE_RAPID_SESSIONS,
        penalty = penalty,
        applies = lambda fp, now, ctx: ctx.recent_session_count >= threshold,
    )


def default_rules() -> list[HeuristicRule]:
    return [unusual_hour_rule(), mobile_device_rule(), rapid_sessions_rule()]


def classify_heuristic(
    score:  float,
    high:   int = settings.HEURISTIC_HIGH_THRESHOLD,
    medium: int = settings.HEURISTIC_MEDIUM_THRESHOLD,
) -> RiskLevel:
    if score > high:
        return RiskLevel.HIGH
    if score > medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class BehaviorHeuristicScorer:
    """
    Aplica las reglas registradas en orden. Para extender el set de reglas
    se llama a register(), sin tocar el agregador.
    """

    def __init__(
        self,
        rules:      Iterable[HeuristicRule] | None = None,
        base_score: int = settings.HEURISTIC_BASE_SCORE,
        high:       int = settings.HEURISTIC_HIGH_THRESHOLD,
        medium:     int = settings.HEURISTIC_MEDIUM_THRESHOLD,
    ):
        self.rules      = list(rules) if rules is not None else default_rules()
        self.base_score = base_score
        self.high       = high
        self.medium     = medium

    def register(self, rule: HeuristicRule) -> None:
        # Mismo nombre → reemplaza la regla anterior
        self.rules = [r for r in self.rules if r.name != rule.name] + [rule]

    def score(
        self,
        fingerprint: DeviceFingerprint,
        now:         datetime,
        context:     HeuristicContext | None = None,
    ) -> HeuristicResult:
        context = context or HeuristicContext()
        total   = float(self.base_score)
        fired: list[str] = []

        for rule in self.rules:
            if rule.applies(fingerprint, now, context):
                total += rule.penalty
                fired.append(rule.name)

        points = clamp_score(total - self.base_score)
        total  = clamp_score(total)
        return HeuristicResult(
            score       = total,
            level       = classify_heuristic(total, self.high, self.medium),
            fired_rules = fired,
            risk_points = points,
        )
