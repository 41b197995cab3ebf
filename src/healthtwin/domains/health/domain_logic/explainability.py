"""Explanations for a single scorer: importance, what-if scenarios,
sensitivity curves and a cumulative waterfall.

Each re-runs the scorer's own factor table on modified inputs, so an
explanation can never disagree with the score it explains. A condition
without an assessment (women's health with no cycle history) has nothing
to explain.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Any

from healthtwin.domains.health.domain_logic.feature_builder import (
    validate_cycles,
    validate_features,
)
from healthtwin.domains.health.domain_logic.risk_models import (
    CycleRecord,
    Direction,
    PatientFeatures,
    ValidationError,
)
from healthtwin.domains.health.domain_logic.risk_scorers import (
    FLAG_KEYS,
    SCORER_SPECS,
    ScorerSpec,
    Trends,
    risk_from_inputs,
    scorer_inputs,
)
from healthtwin.domains.health.domain_logic.scoring import (
    WeightedFactor,
    round_percentage,
    saturate,
)

logger = logging.getLogger(__name__)

# Minimum change (percentage points) for a what-if scenario to be reported.
COUNTERFACTUAL_MIN_DELTA = 0.5

# Importances shown after the baseline in a waterfall.
WATERFALL_STEPS = 6

# (field, target, label, unit)
COUNTERFACTUAL_SCENARIOS: list[tuple[str, Any, str, str]] = [
    ("systolic_bp", 120.0, "Blood Pressure", "mmHg"),
    ("bmi", 24.0, "BMI", ""),
    ("blood_glucose", 95.0, "Blood Glucose", "mg/dL"),
    ("heart_rate", 70.0, "Heart Rate", "bpm"),
    ("smoker", False, "Smoking Status", ""),
]

# field -> (start, stop, step), stop inclusive
SENSITIVITY_GRIDS: dict[str, tuple[int, int, int]] = {
    "bmi": (18, 40, 1),
    "systolic_bp": (90, 180, 5),
    "blood_glucose": (70, 200, 10),
    "heart_rate": (50, 120, 5),
    "age": (20, 90, 5),
}


@dataclass(frozen=True)
class FeatureImportance:
    key: str
    name: str
    importance: float        # percentage points attributable to this factor
    direction: Direction
    current_value: float
    target_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "feature": self.name,
            "importance": self.importance,
            "direction": self.direction,
            "currentValue": self.current_value,
            "targetValue": self.target_value,
        }


@dataclass(frozen=True)
class Counterfactual:
    scenario: str
    current_value: str
    target_value: str
    current_risk: float
    new_risk: float
    risk_reduction: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario,
            "currentValue": self.current_value,
            "targetValue": self.target_value,
            "currentRisk": self.current_risk,
            "newRisk": self.new_risk,
            "riskReduction": self.risk_reduction,
        }


@dataclass(frozen=True)
class SensitivityPoint:
    value: float
    risk: float

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "risk": self.risk}


@dataclass(frozen=True)
class WaterfallStep:
    name: str
    contribution: float
    cumulative: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "contribution": self.contribution,
            "cumulative": self.cumulative,
        }


def _spec(condition: str) -> ScorerSpec:
    try:
        return SCORER_SPECS[condition]
    except KeyError:
        raise ValidationError(
            f"Unknown condition {condition!r}; expected one of {sorted(SCORER_SPECS)}"
        ) from None


def _unassessed(condition: str, cycle_history: Sequence[CycleRecord]) -> bool:
    """Women's health has no assessment without a cycle history, so nothing to explain."""
    return condition == "womens_health" and not cycle_history


def _healthier_value(factor: WeightedFactor, value: float) -> float:
    """Closest value to ``value`` at which the factor stops adding risk."""
    if factor.key in FLAG_KEYS:
        return 0.0 if factor.weight > 0 else 1.0
    if factor.shape == "two_sided":
        lo = factor.reference - factor.tolerance
        hi = factor.reference + factor.tolerance
        return min(max(value, lo), hi)
    if factor.shape == "excess":
        return min(value, factor.reference + factor.tolerance)
    if factor.weight > 0:
        return min(value, factor.reference)
    return max(value, factor.reference)


def feature_importance(
    features: PatientFeatures,
    condition: str,
    *,
    trends: Trends | None = None,
    cycle_history: Sequence[CycleRecord] = (),
) -> list[FeatureImportance]:
    """Masking importance: risk change when one known factor is set to its reference.

    Factors whose masking changes nothing are omitted. Sorted by absolute
    importance, largest first. Empty when the condition has no assessment.
    """
    validate_features(features)
    spec = _spec(condition)
    if _unassessed(condition, cycle_history):
        return []
    validate_cycles(cycle_history)
    inputs = scorer_inputs(condition, features, trends, cycle_history)
    base_risk = risk_from_inputs(spec, inputs)

    importances: list[FeatureImportance] = []
    for factor in spec.factors:
        value = inputs[factor.key]
        if value is None:
            continue
        masked = {**inputs, factor.key: factor.reference}
        importance = round(base_risk - risk_from_inputs(spec, masked), 2)
        if importance == 0:
            continue
        importances.append(FeatureImportance(
            key=factor.key,
            name=factor.name,
            importance=importance,
            direction="increases" if importance > 0 else "decreases",
            current_value=round(value, 1),
            target_value=round(_healthier_value(factor, value), 1),
        ))
    return sorted(importances, key=lambda i: abs(i.importance), reverse=True)


def _format(value: Any, unit: str) -> str:
    if isinstance(value, bool):
        return "Yes" if value else "No"
    text = f"{round(value):d}" if float(value).is_integer() or unit else f"{value:.1f}"
    return f"{text} {unit}" if unit else text


def counterfactuals(
    features: PatientFeatures,
    condition: str,
    *,
    trends: Trends | None = None,
    cycle_history: Sequence[CycleRecord] = (),
) -> list[Counterfactual]:
    """Fixed what-if scenarios applied to the patient's known features.

    A scenario is kept when it moves the risk by more than
    COUNTERFACTUAL_MIN_DELTA points. Sorted by risk reduction, largest first.
    """
    validate_features(features)
    spec = _spec(condition)
    if _unassessed(condition, cycle_history):
        return []
    validate_cycles(cycle_history)
    current_risk = risk_from_inputs(
        spec, scorer_inputs(condition, features, trends, cycle_history)
    )

    results: list[Counterfactual] = []
    for field_name, target, label, unit in COUNTERFACTUAL_SCENARIOS:
        current = getattr(features, field_name)
        if current is None or current == target:
            continue
        changed = replace(features, **{field_name: target})
        new_risk = risk_from_inputs(
            spec, scorer_inputs(condition, changed, trends, cycle_history)
        )
        delta = current_risk - new_risk
        if abs(delta) <= COUNTERFACTUAL_MIN_DELTA:
            continue
        results.append(Counterfactual(
            scenario=label,
            current_value=_format(current, unit),
            target_value=_format(target, unit),
            current_risk=round_percentage(current_risk),
            new_risk=round_percentage(new_risk),
            risk_reduction=round_percentage(delta),
        ))
    logger.debug("%s: %d counterfactual scenarios kept", condition, len(results))
    return sorted(results, key=lambda c: c.risk_reduction, reverse=True)


def sensitivity_curve(
    features: PatientFeatures,
    condition: str,
    field_name: str,
    *,
    trends: Trends | None = None,
    cycle_history: Sequence[CycleRecord] = (),
) -> list[SensitivityPoint]:
    """Risk across a fixed grid of ``field_name`` values, others held fixed."""
    validate_features(features)
    spec = _spec(condition)
    if field_name not in SENSITIVITY_GRIDS:
        raise ValidationError(
            f"No sensitivity grid for {field_name!r}; expected one of {sorted(SENSITIVITY_GRIDS)}"
        )
    if field_name not in {f.key for f in spec.factors}:
        raise ValidationError(f"{field_name} does not influence {condition} risk")
    if _unassessed(condition, cycle_history):
        return []
    validate_cycles(cycle_history)

    start, stop, step = SENSITIVITY_GRIDS[field_name]
    points = []
    for value in range(start, stop + 1, step):
        changed = replace(features, **{field_name: float(value)})
        risk = risk_from_inputs(spec, scorer_inputs(condition, changed, trends, cycle_history))
        points.append(SensitivityPoint(value=float(value), risk=round_percentage(risk)))
    return points


def waterfall(
    features: PatientFeatures,
    condition: str,
    *,
    trends: Trends | None = None,
    cycle_history: Sequence[CycleRecord] = (),
) -> list[WaterfallStep]:
    """Baseline risk followed by the largest factor importances, accumulated.

    The baseline is the scorer's risk with no known inputs. Masking
    importances are not additive, so the last cumulative value approximates
    the patient's risk rather than reproducing it.
    """
    importances = feature_importance(
        features, condition, trends=trends, cycle_history=cycle_history
    )
    if _unassessed(condition, cycle_history):
        return []

    baseline = saturate(_spec(condition).base_log_odds)
    steps = [WaterfallStep(
        name="Baseline Risk",
        contribution=round_percentage(baseline),
        cumulative=round_percentage(baseline),
    )]
    cumulative = baseline
    for item in importances[:WATERFALL_STEPS]:
        cumulative += item.importance
        steps.append(WaterfallStep(
            name=item.name,
            contribution=item.importance,
            cumulative=round_percentage(cumulative),
        ))
    return steps
