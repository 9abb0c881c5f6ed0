"""
RPN (Risk Priority Number) scoring.

RPN = probability x severity x detectability, each factor an integer 1..10,
so RPN ranges 1..1000. The level is a pure function of the RPN.
"""
from __future__ import annotations

from dataclasses import dataclass

FACTOR_MIN = 1
FACTOR_MAX = 10
DEFAULT_FACTOR = 5

# (threshold, level), highest first.
RPN_THRESHOLDS = (
    (500, "critical"),
    (200, "high"),
    (50, "medium"),
)


@dataclass(frozen=True)
class RiskScore:
    rpn: int
    level: str


def _check_factor(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer between {FACTOR_MIN} and {FACTOR_MAX}.")
    if not FACTOR_MIN <= value <= FACTOR_MAX:
        raise ValueError(f"{name} must be an integer between {FACTOR_MIN} and {FACTOR_MAX}.")
    return value


def calculate_rpn(probability: int, severity: int, detectability: int) -> int:
    p = _check_factor("probability", probability)
    s = _check_factor("severity", severity)
    d = _check_factor("detectability", detectability)
    return p * s * d


def risk_level_for_rpn(rpn: int) -> str:
    for threshold, level in RPN_THRESHOLDS:
        if rpn >= threshold:
            return level
    return "low"


def classify(probability: int, severity: int, detectability: int) -> RiskScore:
    rpn = calculate_rpn(probability, severity, detectability)
    return RiskScore(rpn=rpn, level=risk_level_for_rpn(rpn))
