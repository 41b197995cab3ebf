"""Scoring primitives shared by the risk scorers and the simulator.

Each curve shape (saturation, banding, factor deviation, treatment
response) lives in exactly one small function here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Literal

from healthtwin.domains.health.domain_logic.risk_models import RiskLevel

FactorShape = Literal["linear", "two_sided", "excess"]


@dataclass(frozen=True)
class RiskBands:
    """Lower edges of the moderate/high/critical bands (percent, half-open)."""

    moderate: float = 10.0
    high: float = 25.0
    critical: float = 50.0

    def level(self, percentage: float) -> RiskLevel:
        if percentage >= self.critical:
            return "critical"
        if percentage >= self.high:
            return "high"
        if percentage >= self.moderate:
            return "moderate"
        return "low"


@dataclass(frozen=True)
class WeightedFactor:
    """One row of a scorer's factor table.

    ``weight`` is in log-odds per unit of deviation from ``reference``.
    Boolean inputs are scored as 1/0 against a prevalence ``reference``.
    """

    key: str
    name: str
    weight: float
    reference: float
    shape: FactorShape = "linear"
    tolerance: float = 0.0
    unit: str = ""

    def deviation(self, value: float) -> float:
        if self.shape == "two_sided":
            return max(0.0, abs(value - self.reference) - self.tolerance)
        if self.shape == "excess":
            return max(0.0, value - self.reference - self.tolerance)
        return value - self.reference

    def contribution(self, value: float) -> float:
        return self.weight * self.deviation(value)


def sigmoid(x: float) -> float:
    """Logistic function, stable for any finite input."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)


def saturate(log_odds: float) -> float:
    """Map an unbounded log-odds sum to a percentage in [0, 100]."""
    return 100.0 * sigmoid(log_odds)


def round_percentage(value: float) -> float:
    """One-decimal percentage."""
    return round(value, 1)


def treatment_response(effect: float) -> float:
    """Concave adherence response in [0, 1].

    The first unit of adherence buys more risk reduction than the next;
    square root keeps the curve continuous with response(0) == 0 and
    response(1) == 1.
    """
    return math.sqrt(max(0.0, effect))


def data_completeness(known: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return known / total


def scaled_confidence(base: float, completeness: float) -> float:
    """Model confidence discounted by missing inputs (never below half)."""
    return round(base * (0.5 + 0.5 * completeness), 3)
