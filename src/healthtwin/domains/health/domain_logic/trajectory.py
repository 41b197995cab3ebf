"""Forward projection of a risk assessment into a monthly trajectory.

The month-to-month rate is driven by the sign and size of the assessment's
net factor contribution, damped by a treatment effect. Each step moves a
bounded fraction of the remaining headroom, so predictions and bounds stay
inside [0, 100] without clamping.
"""

from __future__ import annotations

import logging
import math
from datetime import date

from healthtwin.domains.health.domain_logic.risk_models import (
    RiskAssessment,
    Trajectory,
    TrajectoryPoint,
    TrendSummary,
    ValidationError,
    VitalTrajectory,
)
from healthtwin.domains.health.domain_logic.scoring import round_percentage, treatment_response

logger = logging.getLogger(__name__)

DEFAULT_HORIZON_MONTHS = 24
MAX_HORIZON_MONTHS = 120

MAX_NATURAL_RATE = 0.04     # fraction of headroom per month at saturation
NET_SCALE = 2.0             # net log-odds at which tanh reaches ~0.76
MAX_TREATMENT_RATE = 0.06   # monthly pull toward 0 at full treatment effect
MAX_STEP_FRACTION = 0.10

CONFIDENCE_DECAY = 0.08
BAND_SCALE = 0.5

# Vital-sign projection: linear drift with a sqrt-widening band.
VITAL_HORIZON_MONTHS = 12
PROJECTED_VITALS = ("systolic_bp", "heart_rate", "blood_glucose")
# Relative month-to-month variability assumed when a series has none.
DEFAULT_VOLATILITY: dict[str, float] = {
    "systolic_bp": 0.05,
    "heart_rate": 0.03,
    "blood_glucose": 0.08,
}
VITAL_BAND_Z = 1.645           # 90% two-sided
VITAL_CONFIDENCE_START = 0.95
VITAL_CONFIDENCE_STEP = 0.03
VITAL_CONFIDENCE_FLOOR = 0.5


def month_label(start: date, months: int) -> str:
    """``YYYY-MM`` of the month ``months`` after ``start``."""
    index = start.year * 12 + (start.month - 1) + months
    return f"{index // 12:04d}-{index % 12 + 1:02d}"


def monthly_rate(net_contribution: float, treatment_effect: float) -> float:
    natural = MAX_NATURAL_RATE * math.tanh(net_contribution / NET_SCALE)
    treated = MAX_TREATMENT_RATE * treatment_response(treatment_effect)
    rate = natural - treated
    return max(-MAX_STEP_FRACTION, min(MAX_STEP_FRACTION, rate))


def step(risk: float, rate: float) -> float:
    """Advance one month. Positive rates eat headroom toward 100, negative toward 0."""
    if rate >= 0:
        return risk + rate * (100.0 - risk)
    return risk + rate * risk


def confidence_at(base_confidence: float, month: int) -> float:
    return base_confidence / (1.0 + CONFIDENCE_DECAY * math.sqrt(month))


def bounds(risk: float, confidence: float) -> tuple[float, float]:
    """Uncertainty band of width ``100 * BAND_SCALE * (1 - confidence)`` split by headroom."""
    spread = BAND_SCALE * (1.0 - confidence)
    return risk - spread * risk, risk + spread * (100.0 - risk)


def _validate_horizon(horizon_months: object) -> None:
    if isinstance(horizon_months, bool) or not isinstance(horizon_months, int):
        raise ValidationError(f"horizon_months must be an integer, got {horizon_months!r}")
    if not 1 <= horizon_months <= MAX_HORIZON_MONTHS:
        raise ValidationError(
            f"horizon_months must be between 1 and {MAX_HORIZON_MONTHS}, got {horizon_months}"
        )


def _validate(
    assessment: RiskAssessment, horizon_months: object, treatment_effect: object
) -> None:
    if not isinstance(assessment, RiskAssessment):
        raise ValidationError(
            f"assessment must be a RiskAssessment, got {type(assessment).__name__}"
        )
    for name, value, hi in (
        ("risk_percentage", assessment.risk_percentage, 100.0),
        ("confidence", assessment.confidence, 1.0),
    ):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"assessment.{name} must be a number, got {value!r}")
        if not math.isfinite(value) or not 0.0 <= value <= hi:
            raise ValidationError(f"assessment.{name} must be within [0, {hi:g}], got {value!r}")
    if not math.isfinite(assessment.net_contribution):
        raise ValidationError("assessment factor contributions must be finite")
    _validate_horizon(horizon_months)
    if isinstance(treatment_effect, bool) or not isinstance(treatment_effect, (int, float)):
        raise ValidationError(f"treatment_effect must be a number, got {treatment_effect!r}")
    if not math.isfinite(treatment_effect) or not 0.0 <= treatment_effect <= 1.0:
        raise ValidationError(
            f"treatment_effect must be within [0, 1], got {treatment_effect!r}"
        )


def project(
    assessment: RiskAssessment,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    treatment_effect: float = 0.0,
    *,
    start: date | None = None,
) -> Trajectory:
    """Project ``assessment`` forward month by month.

    Args:
        assessment: Anchor of the projection (month 0).
        horizon_months: Number of projected months after the anchor (1-120).
        treatment_effect: Treatment strength in [0, 1]; 0 is the natural course.
        start: Calendar month of the anchor. Defaults to today.

    Returns:
        Trajectory with ``horizon_months + 1`` points.

    Raises:
        ValidationError: Assessment, horizon or treatment effect out of range.
    """
    _validate(assessment, horizon_months, treatment_effect)
    start = start or date.today()

    rate = monthly_rate(assessment.net_contribution, treatment_effect)
    logger.debug(
        "Projecting %s over %d months (rate %.4f, effect %.2f)",
        assessment.condition, horizon_months, rate, treatment_effect,
    )

    points: list[TrajectoryPoint] = []
    risk = float(assessment.risk_percentage)
    for month in range(horizon_months + 1):
        if month > 0:
            risk = step(risk, rate)
        confidence = confidence_at(assessment.confidence, month)
        lower, upper = bounds(risk, confidence)
        points.append(TrajectoryPoint(
            timestamp=month_label(start, month),
            month=month,
            predicted=round_percentage(risk),
            lower_bound=round_percentage(lower),
            upper_bound=round_percentage(upper),
            confidence=round(confidence, 3),
        ))

    return Trajectory(
        condition=assessment.condition,
        points=tuple(points),
        horizon_months=horizon_months,
        treatment_effect=float(treatment_effect),
        generated_from=assessment.generated_from,
    )


def vital_confidence(month: int) -> float:
    return max(VITAL_CONFIDENCE_FLOOR, VITAL_CONFIDENCE_START - VITAL_CONFIDENCE_STEP * month)


def project_vital(
    trend: TrendSummary,
    horizon_months: int = VITAL_HORIZON_MONTHS,
    *,
    start: date | None = None,
) -> VitalTrajectory | None:
    """Extend a vital-sign trend forward, in the metric's own units.

    The fitted slope carries the prediction; the band grows with
    ``volatility * sqrt(month)`` around it. Series without a usable slope
    are projected flat. Returns None when the trend has no current value.
    """
    if not isinstance(trend, TrendSummary):
        raise ValidationError(f"trend must be a TrendSummary, got {type(trend).__name__}")
    _validate_horizon(horizon_months)
    if trend.current is None:
        return None
    start = start or date.today()

    slope = trend.slope_per_month if trend.sufficient and trend.slope_per_month else 0.0
    volatility = trend.volatility or DEFAULT_VOLATILITY.get(trend.metric, 0.05)
    current = float(trend.current)
    if not all(math.isfinite(v) for v in (current, slope, volatility)) or volatility < 0:
        raise ValidationError(f"{trend.metric} trend has non-finite or negative statistics")
    scale = VITAL_BAND_Z * volatility * abs(current)

    points: list[TrajectoryPoint] = []
    for month in range(horizon_months + 1):
        predicted = max(0.0, current + slope * month)
        half_width = scale * math.sqrt(month)
        points.append(TrajectoryPoint(
            timestamp=month_label(start, month),
            month=month,
            predicted=round(predicted, 1),
            lower_bound=round(max(0.0, predicted - half_width), 1),
            upper_bound=round(predicted + half_width, 1),
            confidence=round(vital_confidence(month), 3),
        ))

    return VitalTrajectory(
        metric=trend.metric,
        points=tuple(points),
        slope_per_month=slope,
        volatility=volatility,
        persistence=trend.persistence,
    )
