"""Per-condition risk scorers: PatientFeatures (+ trends) -> RiskAssessment.

Every scorer is the same recipe over its own factor table:

    log_odds = base + sum(weight * deviation(value) for known factors)
    risk     = 100 * sigmoid(log_odds)

Unknown inputs are skipped, never imputed. Weight tables, base log-odds and
band edges are calibration defaults, not clinically validated coefficients.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass

from healthtwin.domains.health.domain_logic.feature_builder import (
    validate_cycles,
    validate_features,
)
from healthtwin.domains.health.domain_logic.risk_models import (
    CycleRecord,
    PatientFeatures,
    RiskAssessment,
    RiskFactor,
    TrendSummary,
    ValidationError,
)
from healthtwin.domains.health.domain_logic.scoring import (
    RiskBands,
    WeightedFactor,
    data_completeness,
    round_percentage,
    saturate,
    scaled_confidence,
)

logger = logging.getLogger(__name__)

Trends = Mapping[str, TrendSummary]


@dataclass(frozen=True)
class ScorerSpec:
    """Calibration of one scorer."""

    condition: str
    base_log_odds: float
    base_confidence: float
    bands: RiskBands
    factors: tuple[WeightedFactor, ...]

    def factor(self, key: str) -> WeightedFactor:
        for f in self.factors:
            if f.key == key:
                return f
        raise KeyError(key)


# ---------------------------------------------------------------------------
# Factor tables
# ---------------------------------------------------------------------------

CARDIOVASCULAR = ScorerSpec(
    condition="cardiovascular",
    base_log_odds=-2.3,
    base_confidence=0.85,
    bands=RiskBands(moderate=10, high=25, critical=50),
    factors=(
        WeightedFactor("age", "Age", 0.04, 45, unit=" years"),
        WeightedFactor("male_sex", "Sex", 0.3, 0.5),
        WeightedFactor("systolic_bp", "Systolic Blood Pressure", 0.02, 120, unit=" mmHg"),
        WeightedFactor("diastolic_bp", "Diastolic Blood Pressure", 0.01, 80, unit=" mmHg"),
        WeightedFactor("heart_rate", "Resting Heart Rate", 0.01, 72, unit=" bpm"),
        WeightedFactor("bmi", "BMI", 0.05, 25),
        WeightedFactor("blood_glucose", "Blood Glucose", 0.006, 100, unit=" mg/dL"),
        WeightedFactor("total_cholesterol", "Total Cholesterol", 0.006, 200, unit=" mg/dL"),
        WeightedFactor("hdl_cholesterol", "HDL Cholesterol", -0.02, 50, unit=" mg/dL"),
        WeightedFactor("oxygen_saturation", "Oxygen Saturation", -0.05, 97, unit="%"),
        WeightedFactor("smoker", "Smoking", 0.7, 0.15),
        WeightedFactor("physically_active", "Physical Activity", -0.3, 0.5),
        WeightedFactor("family_history_heart_disease", "Family History of Heart Disease", 0.5, 0.2),
        WeightedFactor("family_history_hypertension", "Family History of Hypertension", 0.2, 0.25),
        WeightedFactor("systolic_trend", "Blood Pressure Trend", 0.03, 0, unit=" mmHg/month"),
    ),
)

DIABETES = ScorerSpec(
    condition="diabetes",
    base_log_odds=-2.3,
    base_confidence=0.82,
    bands=RiskBands(moderate=10, high=25, critical=50),
    factors=(
        WeightedFactor("age", "Age", 0.03, 45, unit=" years"),
        WeightedFactor("bmi", "BMI", 0.09, 25),
        WeightedFactor("blood_glucose", "Blood Glucose", 0.025, 100, unit=" mg/dL"),
        WeightedFactor("systolic_bp", "Systolic Blood Pressure", 0.008, 120, unit=" mmHg"),
        WeightedFactor("hdl_cholesterol", "HDL Cholesterol", -0.015, 50, unit=" mg/dL"),
        WeightedFactor("smoker", "Smoking", 0.35, 0.15),
        WeightedFactor("physically_active", "Physical Activity", -0.4, 0.5),
        WeightedFactor("family_history_diabetes", "Family History of Diabetes", 0.9, 0.2),
        WeightedFactor("glucose_trend", "Blood Glucose Trend", 0.02, 0, unit=" mg/dL/month"),
    ),
)

GENERAL_HEALTH = ScorerSpec(
    condition="general_health",
    base_log_odds=-2.0,
    base_confidence=0.88,
    bands=RiskBands(moderate=20, high=40, critical=60),
    factors=(
        WeightedFactor("age", "Age", 0.02, 45, unit=" years"),
        WeightedFactor("systolic_bp", "Systolic Blood Pressure", 0.015, 120, unit=" mmHg"),
        WeightedFactor("diastolic_bp", "Diastolic Blood Pressure", 0.01, 80, unit=" mmHg"),
        WeightedFactor(
            "heart_rate", "Resting Heart Rate", 0.04, 70,
            shape="two_sided", tolerance=10, unit=" bpm",
        ),
        WeightedFactor("bmi", "Weight Status", 0.12, 22, shape="two_sided", tolerance=3),
        WeightedFactor("oxygen_saturation", "Oxygen Saturation", -0.15, 97, unit="%"),
        WeightedFactor("blood_glucose", "Blood Glucose", 0.01, 100, unit=" mg/dL"),
        WeightedFactor("smoker", "Smoking", 1.0, 0.15),
        WeightedFactor("physically_active", "Physical Activity", -0.5, 0.5),
    ),
)

WOMENS_HEALTH = ScorerSpec(
    condition="womens_health",
    base_log_odds=-2.5,
    base_confidence=0.78,
    bands=RiskBands(moderate=10, high=25, critical=50),
    factors=(
        WeightedFactor(
            "cycle_length", "Cycle Length", 0.15, 28,
            shape="two_sided", tolerance=7, unit=" days",
        ),
        WeightedFactor(
            "cycle_irregularity", "Cycle Irregularity", 0.25, 0,
            shape="excess", tolerance=4, unit=" days",
        ),
        WeightedFactor(
            "period_length", "Period Length", 0.2, 5,
            shape="two_sided", tolerance=3, unit=" days",
        ),
        WeightedFactor("heavy_flow_share", "Heavy Flow", 0.8, 0.2),
        WeightedFactor("pcos_symptom_share", "PCOS Indicators", 1.2, 0.1),
        WeightedFactor("bmi", "Weight", 0.08, 25, shape="excess"),
    ),
)

SCORER_SPECS: dict[str, ScorerSpec] = {
    spec.condition: spec
    for spec in (CARDIOVASCULAR, DIABETES, GENERAL_HEALTH, WOMENS_HEALTH)
}

FLAG_KEYS = {
    "male_sex",
    "smoker",
    "physically_active",
    "family_history_diabetes",
    "family_history_heart_disease",
    "family_history_hypertension",
}

PCOS_SYMPTOMS = ["acne", "excessive hair growth", "hair loss", "weight gain"]


# ---------------------------------------------------------------------------
# Input extraction
# ---------------------------------------------------------------------------

def _as_unit(flag: bool | None) -> float | None:
    if flag is None:
        return None
    return 1.0 if flag else 0.0


def _trend_slope(trends: Trends | None, metric: str) -> float | None:
    if not trends:
        return None
    trend = trends.get(metric)
    if trend is None or not trend.sufficient:
        return None
    return trend.slope_per_month


def _feature_inputs(features: PatientFeatures) -> dict[str, float | None]:
    male: bool | None = None
    if features.sex in ("male", "female"):
        male = features.sex == "male"
    return {
        "age": features.age,
        "male_sex": _as_unit(male),
        "systolic_bp": features.systolic_bp,
        "diastolic_bp": features.diastolic_bp,
        "heart_rate": features.heart_rate,
        "bmi": features.bmi,
        "blood_glucose": features.blood_glucose,
        "total_cholesterol": features.total_cholesterol,
        "hdl_cholesterol": features.hdl_cholesterol,
        "oxygen_saturation": features.oxygen_saturation,
        "smoker": _as_unit(features.smoker),
        "physically_active": _as_unit(features.physically_active),
        "family_history_diabetes": _as_unit(features.family_history_diabetes),
        "family_history_heart_disease": _as_unit(features.family_history_heart_disease),
        "family_history_hypertension": _as_unit(features.family_history_hypertension),
    }


def cycle_inputs(cycles: Sequence[CycleRecord]) -> dict[str, float | None]:
    """Derived cycle statistics; each is None when the history cannot support it."""
    lengths = [c.cycle_length for c in cycles if c.cycle_length is not None]
    periods = [c.period_length for c in cycles if c.period_length is not None]
    flows = [c.flow_intensity for c in cycles if c.flow_intensity]
    reported = [c for c in cycles if c.symptoms]

    pcos_share: float | None = None
    if reported:
        flagged = sum(
            1 for c in cycles
            if any(p in s.lower() for s in c.symptoms for p in PCOS_SYMPTOMS)
        )
        pcos_share = flagged / len(cycles)

    return {
        "cycle_length": statistics.fmean(lengths) if lengths else None,
        "cycle_irregularity": statistics.pstdev(lengths) if len(lengths) >= 2 else None,
        "period_length": statistics.fmean(periods) if periods else None,
        "heavy_flow_share": (
            sum(1 for f in flows if f == "heavy") / len(flows) if flows else None
        ),
        "pcos_symptom_share": pcos_share,
    }


def scorer_inputs(
    condition: str,
    features: PatientFeatures,
    trends: Trends | None = None,
    cycles: Sequence[CycleRecord] = (),
) -> dict[str, float | None]:
    """All factor inputs a scorer reads, keyed by factor key."""
    inputs = _feature_inputs(features)
    inputs["systolic_trend"] = _trend_slope(trends, "systolic_bp")
    inputs["glucose_trend"] = _trend_slope(trends, "blood_glucose")
    if condition == "womens_health":
        inputs.update(cycle_inputs(cycles))
    spec = SCORER_SPECS[condition]
    return {f.key: inputs.get(f.key) for f in spec.factors}


# ---------------------------------------------------------------------------
# Descriptions & recommendations
# ---------------------------------------------------------------------------

def _describe_flag(key: str, value: float) -> str:
    yes = value >= 0.5
    return {
        "male_sex": "Male" if yes else "Female",
        "smoker": "Current smoker" if yes else "Non-smoker",
        "physically_active": "Physically active" if yes else "Not physically active",
        "family_history_diabetes": (
            "First-degree relative with diabetes" if yes else "No family history of diabetes"
        ),
        "family_history_heart_disease": (
            "Family history of heart disease" if yes else "No family history of heart disease"
        ),
        "family_history_hypertension": (
            "Family history of hypertension" if yes else "No family history of hypertension"
        ),
    }[key]


def _band_label(key: str, value: float) -> str:
    if key == "systolic_bp":
        if value >= 160:
            return "stage 2 hypertension"
        if value >= 140:
            return "stage 1 hypertension"
        if value >= 130:
            return "elevated"
        return "normal" if value >= 90 else "low"
    if key == "bmi":
        if value >= 35:
            return "obesity class II+"
        if value >= 30:
            return "obesity"
        if value >= 25:
            return "overweight"
        return "healthy weight" if value >= 18.5 else "underweight"
    if key == "blood_glucose":
        if value >= 126:
            return "diabetic range"
        if value >= 100:
            return "pre-diabetic range"
        return "normal"
    if key == "heart_rate":
        return "outside normal range" if value > 100 or value < 60 else "normal"
    if key == "oxygen_saturation":
        return "below optimal" if value < 95 else "normal"
    return ""


def _describe(factor: WeightedFactor, value: float, contribution: float) -> str:
    if factor.key in FLAG_KEYS:
        return _describe_flag(factor.key, value)
    if factor.key.endswith("_share"):
        return f"{value:.0%} of recorded cycles"
    text = f"{value:.1f}{factor.unit}" if factor.key == "bmi" else f"{value:g}{factor.unit}"
    label = _band_label(factor.key, value)
    if label:
        text = f"{text} - {label}"
    elif factor.key == "cycle_irregularity":
        text = f"Cycle length varies by {value:.1f} days"
    trend = "raises" if contribution > 0 else "lowers"
    return f"{text} ({trend} risk)"


def _recommendations(condition: str, level: str, inputs: Mapping[str, float | None]) -> list[str]:
    """Deterministic guidance strings for one assessment."""
    elevated = level in ("high", "critical")
    recs: list[str] = []

    def at_least(key: str, threshold: float) -> bool:
        value = inputs.get(key)
        return value is not None and value >= threshold

    if condition == "cardiovascular":
        if elevated:
            recs.append("Schedule a cardiology review for a comprehensive cardiovascular assessment")
        if at_least("systolic_bp", 130):
            recs.append("Monitor blood pressure at home and discuss lifestyle changes to reduce it")
        if at_least("total_cholesterol", 200):
            recs.append("Adopt a heart-healthy diet low in saturated fats")
        if at_least("smoker", 1):
            recs.append("Smoking cessation is the single largest modifiable risk reduction")
        recs.append("Aim for at least 150 minutes of moderate aerobic exercise per week")
    elif condition == "diabetes":
        if elevated:
            recs.append("Ask your clinician about HbA1c testing and diabetes screening")
        if at_least("blood_glucose", 100):
            recs.append("Track fasting blood glucose regularly")
        if at_least("bmi", 25):
            recs.append("A 5-10% weight reduction substantially lowers diabetes risk")
        recs.append("Favor low glycemic index meals and limit sugary beverages")
    elif condition == "general_health":
        if elevated:
            recs.append("Schedule a comprehensive checkup with your primary care physician")
        recs.append("Aim for 7-9 hours of quality sleep each night")
        recs.append("Practice stress management through exercise, rest or hobbies")
        if inputs.get("smoker") == 0.0:
            recs.append("Continue avoiding tobacco and limit alcohol")
    elif condition == "womens_health":
        if elevated:
            recs.append("Consult a gynecologist or endocrinologist for a hormonal evaluation")
        if at_least("cycle_irregularity", 7):
            recs.append("Keep tracking cycles; persistent irregularity deserves a clinical review")
        recs.append("Track your menstrual cycle consistently to identify patterns")
    return recs


# ---------------------------------------------------------------------------
# Scoring core
# ---------------------------------------------------------------------------

def log_odds_from_inputs(spec: ScorerSpec, inputs: Mapping[str, float | None]) -> float:
    """Base log-odds plus every known factor's contribution."""
    return spec.base_log_odds + math.fsum(
        f.contribution(inputs[f.key]) for f in spec.factors if inputs.get(f.key) is not None
    )


def risk_from_inputs(spec: ScorerSpec, inputs: Mapping[str, float | None]) -> float:
    """Unrounded risk percentage for a set of factor inputs."""
    return saturate(log_odds_from_inputs(spec, inputs))


def _assess(
    spec: ScorerSpec,
    features: PatientFeatures,
    inputs: Mapping[str, float | None],
) -> RiskAssessment:
    factors: list[RiskFactor] = []
    known = 0
    for factor in spec.factors:
        value = inputs.get(factor.key)
        if value is None:
            continue
        known += 1
        contribution = factor.contribution(value)
        if contribution == 0:
            continue
        factors.append(RiskFactor(
            key=factor.key,
            name=factor.name,
            direction="increases" if contribution > 0 else "decreases",
            contribution=contribution,
            description=_describe(factor, value, contribution),
            value=None if factor.key in FLAG_KEYS else round(value, 2),
        ))

    percentage = round_percentage(risk_from_inputs(spec, inputs))
    level = spec.bands.level(percentage)
    skipped = len(spec.factors) - known
    if skipped:
        logger.debug("%s: %d unknown factors excluded", spec.condition, skipped)

    return RiskAssessment(
        condition=spec.condition,
        risk_level=level,
        risk_percentage=percentage,
        factors=tuple(factors),
        generated_from=features.snapshot_id,
        confidence=scaled_confidence(
            spec.base_confidence, data_completeness(known, len(spec.factors))
        ),
        recommendations=tuple(_recommendations(spec.condition, level, inputs)),
    )


# ---------------------------------------------------------------------------
# Public scorers
# ---------------------------------------------------------------------------

def score_cardiovascular(
    features: PatientFeatures, trends: Trends | None = None
) -> RiskAssessment:
    """Cardiovascular risk (Framingham-inspired factor table)."""
    validate_features(features)
    return _assess(CARDIOVASCULAR, features, scorer_inputs("cardiovascular", features, trends))


def score_diabetes(features: PatientFeatures, trends: Trends | None = None) -> RiskAssessment:
    """Type 2 diabetes risk (FINDRISC-inspired factor table)."""
    validate_features(features)
    return _assess(DIABETES, features, scorer_inputs("diabetes", features, trends))


def score_general_health(
    features: PatientFeatures, trends: Trends | None = None
) -> RiskAssessment:
    validate_features(features)
    return _assess(GENERAL_HEALTH, features, scorer_inputs("general_health", features, trends))


def score_womens_health(
    features: PatientFeatures,
    cycle_history: Sequence[CycleRecord],
    trends: Trends | None = None,
) -> RiskAssessment | None:
    """Menstrual-health pattern risk.

    Returns None for an empty history: no data is not reassurance.
    """
    validate_features(features)
    if not cycle_history:
        return None
    validate_cycles(cycle_history)
    inputs = scorer_inputs("womens_health", features, trends, cycle_history)
    return _assess(WOMENS_HEALTH, features, inputs)


Scorer = Callable[[PatientFeatures, "Trends | None"], RiskAssessment]

SCORERS: dict[str, Scorer] = {
    "cardiovascular": score_cardiovascular,
    "diabetes": score_diabetes,
    "general_health": score_general_health,
}


def score_condition(
    condition: str,
    features: PatientFeatures,
    trends: Trends | None = None,
    cycle_history: Sequence[CycleRecord] = (),
) -> RiskAssessment | None:
    """Dispatch to the scorer registered for ``condition``."""
    if condition == "womens_health":
        return score_womens_health(features, cycle_history, trends)
    try:
        scorer = SCORERS[condition]
    except KeyError:
        raise ValidationError(
            f"Unknown condition {condition!r}; expected one of {sorted(SCORER_SPECS)}"
        ) from None
    return scorer(features, trends)
