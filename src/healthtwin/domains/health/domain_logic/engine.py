"""Pipeline orchestration over already-fetched host snapshots.

    records -> build_features -> scorers (+ vital trends) -> project -> rank

The order is fixed; the only branch is the women's-health scorer, skipped
when there is no cycle history.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from healthtwin.domains.health.domain_logic.feature_builder import (
    build_features,
    parse_cycle_history,
)
from healthtwin.domains.health.domain_logic.risk_models import (
    MAX_CYCLE_RECORDS,
    MAX_VITAL_READINGS,
    DigitalTwinSimulation,
    HealthAssessment,
    Trajectory,
    TreatmentOption,
    TreatmentTemplate,
    ValidationError,
    VitalTrajectory,
)
from healthtwin.domains.health.domain_logic.risk_scorers import (
    score_cardiovascular,
    score_diabetes,
    score_general_health,
    score_womens_health,
)
from healthtwin.domains.health.domain_logic.trajectory import (
    DEFAULT_HORIZON_MONTHS,
    PROJECTED_VITALS,
    VITAL_HORIZON_MONTHS,
    project,
    project_vital,
)
from healthtwin.domains.health.domain_logic.treatment_catalog import load_treatment_catalog
from healthtwin.domains.health.domain_logic.treatment_policy import PolicyConfig, rank
from healthtwin.domains.health.domain_logic.trend_analyzer import (
    analyze_vital_trends,
    record_timestamp,
)

logger = logging.getLogger(__name__)


def _latest_vitals(vitals: Sequence[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    if not vitals:
        return None
    if not all(isinstance(v, Mapping) for v in vitals):
        raise ValidationError("vitals must be a list of mappings")
    return max(enumerate(vitals), key=lambda item: record_timestamp(*item))[1]


def assess_patient(
    profile: Mapping[str, Any],
    vitals: Sequence[Mapping[str, Any]] | None = None,
    cycle_history: Sequence[Mapping[str, Any]] | None = None,
    *,
    as_of: date | None = None,
    max_vital_readings: int = MAX_VITAL_READINGS,
    max_cycle_records: int = MAX_CYCLE_RECORDS,
) -> HealthAssessment:
    """Score every condition for one patient.

    Args:
        profile: Host profile record (required).
        vitals: Vitals records with timestamps, most recent first.
        cycle_history: Cycle records, most recent first.
        as_of: Reference date for age derivation.

    Raises:
        ValidationError: Any malformed input. Nothing partial is returned.
    """
    vitals = list(vitals or [])
    trends = analyze_vital_trends(vitals, limit=max_vital_readings)
    features = build_features(profile, _latest_vitals(vitals), as_of=as_of)
    cycles = parse_cycle_history(cycle_history, limit=max_cycle_records)

    assessment = HealthAssessment(
        features=features,
        cardiovascular=score_cardiovascular(features, trends),
        diabetes=score_diabetes(features, trends),
        general_health=score_general_health(features, trends),
        womens_health=score_womens_health(features, cycles, trends),
        vital_trends=trends,
    )
    logger.debug(
        "Assessed snapshot %s: %s",
        features.snapshot_id[:12],
        {c: a.risk_level for c, a in assessment.by_condition().items()},
    )
    return assessment


def _applies(template: TreatmentTemplate, condition: str) -> bool:
    return not template.conditions or condition in template.conditions


def simulate_patient(
    assessment: HealthAssessment,
    *,
    horizon_months: int = DEFAULT_HORIZON_MONTHS,
    treatment_effect: float = 0.0,
    catalog: Sequence[TreatmentTemplate] | None = None,
    policy: PolicyConfig | None = None,
    start: date | None = None,
    vital_horizon_months: int = VITAL_HORIZON_MONTHS,
) -> DigitalTwinSimulation:
    """Project each available assessment and rank the treatments that apply to it.

    Treatments are ranked against the untreated course, whatever
    ``treatment_effect`` the returned trajectories were projected with.
    Blood pressure, heart rate and glucose are also projected from their
    vital trends, when the patient has readings for them.
    """
    if catalog is None:
        catalog = load_treatment_catalog()
    start = start or date.today()

    trajectories: dict[str, Trajectory] = {}
    treatments: dict[str, tuple[TreatmentOption, ...]] = {}
    for condition, risk in assessment.by_condition().items():
        trajectory = project(risk, horizon_months, treatment_effect, start=start)
        untreated = (
            trajectory if treatment_effect == 0
            else project(risk, horizon_months, 0.0, start=start)
        )
        trajectories[condition] = trajectory
        treatments[condition] = rank(
            untreated, [t for t in catalog if _applies(t, condition)], policy=policy
        )

    vital_trajectories: dict[str, VitalTrajectory] = {}
    for metric in PROJECTED_VITALS:
        trend = assessment.vital_trends.get(metric)
        if trend is None:
            continue
        projected = project_vital(trend, vital_horizon_months, start=start)
        if projected is not None:
            vital_trajectories[metric] = projected

    return DigitalTwinSimulation(
        trajectories=trajectories,
        treatments=treatments,
        vital_trajectories=vital_trajectories,
    )
