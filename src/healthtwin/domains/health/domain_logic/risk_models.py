"""Risk engine value objects and domain constants.

Every entity here is a frozen dataclass created per request. Optional
measurements are typed ``float | None`` (or ``bool | None``): ``None`` is the
one and only "unknown" marker, never a numeric default.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

from healthtwin.core.audit.logger import hash_payload


class ValidationError(ValueError):
    """Raised when an input is malformed or physiologically impossible."""


RiskLevel = Literal["low", "moderate", "high", "critical"]
Direction = Literal["increases", "decreases"]
Sex = Literal["male", "female", "other"]

CONDITIONS = [
    "cardiovascular",
    "diabetes",
    "general_health",
    "womens_health",
]

# Upper bounds of the recent windows the engine looks at.
MAX_VITAL_READINGS = 30
MAX_CYCLE_RECORDS = 12

# Physiologically possible ranges (inclusive). Values outside are rejected.
PHYSIOLOGICAL_LIMITS: dict[str, tuple[float, float]] = {
    "age": (0, 130),
    "height_cm": (30, 272),
    "weight_kg": (1, 650),
    "systolic_bp": (50, 300),
    "diastolic_bp": (20, 200),
    "heart_rate": (20, 300),
    "blood_glucose": (10, 1000),
    "oxygen_saturation": (50, 100),
    "total_cholesterol": (50, 1000),
    "hdl_cholesterol": (5, 200),
    "ldl_cholesterol": (5, 700),
    "cycle_length": (1, 365),
    "period_length": (0, 60),
}


# ---------------------------------------------------------------------------
# Patient snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatientFeatures:
    """Canonical, immutable feature snapshot for one engine invocation."""

    age: float | None = None
    sex: Sex | None = None
    height_cm: float | None = None
    weight_kg: float | None = None
    bmi: float | None = None
    systolic_bp: float | None = None
    diastolic_bp: float | None = None
    heart_rate: float | None = None
    blood_glucose: float | None = None
    oxygen_saturation: float | None = None
    total_cholesterol: float | None = None
    hdl_cholesterol: float | None = None
    ldl_cholesterol: float | None = None
    smoker: bool | None = None
    physically_active: bool | None = None
    family_history_diabetes: bool | None = None
    family_history_heart_disease: bool | None = None
    family_history_hypertension: bool | None = None
    blood_type: str | None = None

    @property
    def snapshot_id(self) -> str:
        """SHA-256 of the canonical snapshot, for traceability."""
        return hash_payload(asdict(self))

    def known_fields(self) -> list[str]:
        """Names of the measurement fields that carry a value."""
        return [
            f.name for f in fields(self)
            if f.name not in ("sex", "blood_type") and getattr(self, f.name) is not None
        ]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["snapshot_id"] = self.snapshot_id
        return data


@dataclass(frozen=True)
class CycleRecord:
    """One menstrual cycle as reported by the host."""

    cycle_length: float | None = None
    period_length: float | None = None
    flow_intensity: str | None = None
    symptoms: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RiskFactor:
    """A named, signed contribution to a risk score (log-odds units)."""

    key: str
    name: str
    direction: Direction
    contribution: float
    description: str
    value: float | None = None

    @property
    def magnitude(self) -> float:
        return abs(self.contribution)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "direction": self.direction,
            "contribution": round(self.contribution, 4),
            "magnitude": round(self.magnitude, 4),
            "value": self.value,
            "description": self.description,
        }


@dataclass(frozen=True)
class RiskAssessment:
    """Scored risk for one condition family."""

    condition: str
    risk_level: RiskLevel
    risk_percentage: float
    factors: tuple[RiskFactor, ...]
    generated_from: str
    confidence: float
    recommendations: tuple[str, ...] = ()

    @property
    def net_contribution(self) -> float:
        """Signed sum of factor contributions."""
        return math.fsum(f.contribution for f in self.factors)

    def top_factors(self, n: int = 8) -> list[RiskFactor]:
        """Largest contributors by absolute magnitude."""
        return sorted(self.factors, key=lambda f: f.magnitude, reverse=True)[:n]

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "riskLevel": self.risk_level,
            "riskPercentage": self.risk_percentage,
            "confidence": self.confidence,
            "factors": [f.to_dict() for f in self.factors],
            "recommendations": list(self.recommendations),
            "generatedFrom": self.generated_from,
        }


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Anomaly:
    """A single reading outside the metric's plausible range."""

    recorded_at: str
    value: float
    kind: Literal["below_range", "above_range"]


@dataclass(frozen=True)
class TrendSummary:
    """Slope and variability of one vital-sign series."""

    metric: str
    status: Literal["ok", "insufficient_data"]
    data_points: int
    direction: Literal["increasing", "decreasing", "stable", "insufficient_data"]
    current: float | None = None
    mean: float | None = None
    slope_per_month: float | None = None
    std_dev: float | None = None
    volatility: float | None = None
    persistence: float | None = None    # |rising - falling steps| / steps
    anomalies: tuple[Anomaly, ...] = ()

    @property
    def sufficient(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "status": self.status,
            "data_points": self.data_points,
            "direction": self.direction,
            "current": self.current,
            "mean": self.mean,
            "slope_per_month": self.slope_per_month,
            "std_dev": self.std_dev,
            "volatility": self.volatility,
            "persistence": self.persistence,
            "anomalies": [asdict(a) for a in self.anomalies],
        }


# ---------------------------------------------------------------------------
# Trajectories
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TrajectoryPoint:
    timestamp: str  # ISO 8601, month granularity (YYYY-MM)
    month: int
    predicted: float
    lower_bound: float
    upper_bound: float
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "month": self.month,
            "predicted": self.predicted,
            "lowerBound": self.lower_bound,
            "upperBound": self.upper_bound,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class Trajectory:
    """Monthly projection of a risk percentage; point 0 is the anchor."""

    condition: str
    points: tuple[TrajectoryPoint, ...]
    horizon_months: int
    treatment_effect: float
    generated_from: str

    @property
    def final(self) -> TrajectoryPoint:
        return self.points[-1]

    def to_dict(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "horizonMonths": self.horizon_months,
            "treatmentEffect": self.treatment_effect,
            "generatedFrom": self.generated_from,
            "points": [p.to_dict() for p in self.points],
        }


@dataclass(frozen=True)
class VitalTrajectory:
    """Monthly projection of one vital sign in its own units."""

    metric: str
    points: tuple[TrajectoryPoint, ...]
    slope_per_month: float
    volatility: float
    persistence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "slopePerMonth": self.slope_per_month,
            "volatility": self.volatility,
            "persistence": self.persistence,
            "points": [p.to_dict() for p in self.points],
        }


# ---------------------------------------------------------------------------
# Treatments
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TreatmentTemplate:
    """Catalog entry describing a treatment before it is scored."""

    id: str
    name: str
    description: str
    risk_reduction: float       # 0-100: relative risk reduction
    adherence_required: float   # 0-100: regimen difficulty
    side_effect_risk: float     # 0-100
    conditions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TreatmentOption:
    """A scored treatment within a ranked set."""

    id: str
    name: str
    description: str
    expected_outcome: float
    risk_reduction: float
    adherence_required: float
    side_effect_risk: float
    q_value: float
    recommended: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "expectedOutcome": self.expected_outcome,
            "riskReduction": self.risk_reduction,
            "adherenceRequired": self.adherence_required,
            "sideEffectRisk": self.side_effect_risk,
            "qValue": self.q_value,
            "recommended": self.recommended,
        }


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HealthAssessment:
    """Everything the scoring stage produces for one patient."""

    features: PatientFeatures
    cardiovascular: RiskAssessment
    diabetes: RiskAssessment
    general_health: RiskAssessment
    womens_health: RiskAssessment | None
    vital_trends: dict[str, TrendSummary] = field(default_factory=dict)

    def by_condition(self) -> dict[str, RiskAssessment]:
        """Available assessments keyed by condition name."""
        result = {
            "cardiovascular": self.cardiovascular,
            "diabetes": self.diabetes,
            "general_health": self.general_health,
        }
        if self.womens_health is not None:
            result["womens_health"] = self.womens_health
        return result

    def to_dict(self) -> dict[str, Any]:
        return {
            "cardiovascular": self.cardiovascular.to_dict(),
            "diabetes": self.diabetes.to_dict(),
            "generalHealth": self.general_health.to_dict(),
            "womensHealth": (
                self.womens_health.to_dict() if self.womens_health is not None else None
            ),
            "vitalTrends": {k: v.to_dict() for k, v in self.vital_trends.items()},
        }


@dataclass(frozen=True)
class DigitalTwinSimulation:
    """Trajectories and ranked treatments per condition."""

    trajectories: dict[str, Trajectory]
    treatments: dict[str, tuple[TreatmentOption, ...]]
    vital_trajectories: dict[str, VitalTrajectory] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trajectories": {k: t.to_dict() for k, t in self.trajectories.items()},
            "treatments": {
                k: [o.to_dict() for o in opts] for k, opts in self.treatments.items()
            },
            "vitalTrajectories": {
                k: v.to_dict() for k, v in self.vital_trajectories.items()
            },
        }
