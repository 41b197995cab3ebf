"""MCP tools exposing the risk & trajectory engine.

Every tool is a thin adapter: parse arguments, run the engine, serialize to
JSON. Input problems (``ValidationError``, ``CatalogError``) become a
client-visible ``ToolError``; anything else propagates and is masked by the
server. Each call is audit-logged with a hash of its input, never the input.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from datetime import date
from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from healthtwin.domains.health.domain_logic.engine import assess_patient, simulate_patient
from healthtwin.domains.health.domain_logic.explainability import (
    counterfactuals,
    feature_importance,
    sensitivity_curve,
    waterfall,
)
from healthtwin.domains.health.domain_logic.feature_builder import parse_cycle_history
from healthtwin.domains.health.domain_logic.risk_models import ValidationError
from healthtwin.domains.health.domain_logic.treatment_catalog import CatalogError
from healthtwin.domains.health.domain_logic.trend_analyzer import analyze_vital_trends

if TYPE_CHECKING:
    from healthtwin.core.audit.logger import AuditLogger
    from healthtwin.core.config.settings import Settings
    from healthtwin.domains.health.domain_logic.risk_models import TreatmentTemplate
    from healthtwin.domains.health.domain_logic.treatment_policy import PolicyConfig

logger = logging.getLogger(__name__)


def _parse_day(field_name: str, raw: str | None) -> date | None:
    """``YYYY-MM-DD`` or ``YYYY-MM`` (first of month)."""
    if raw is None:
        return None
    text = raw.strip()
    if len(text) == 7:
        text += "-01"
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO 8601 date, got {raw!r}") from None


def register_risk_engine_tools(
    mcp: FastMCP,
    settings: Settings,
    catalog: list[TreatmentTemplate],
    policy: PolicyConfig,
    audit_logger: AuditLogger,
) -> None:
    """Register the risk engine tools on the MCP server."""

    def _invoke(
        tool_name: str,
        tool_input: dict[str, Any],
        compute: Callable[[], tuple[dict[str, Any], str | None]],
    ) -> str:
        start_time = time.monotonic()
        try:
            payload, snapshot_id = compute()
        except (ValidationError, CatalogError) as exc:
            audit_logger.log_tool_call(
                tool_name=tool_name,
                tool_input=tool_input,
                duration_ms=(time.monotonic() - start_time) * 1000,
                status="rejected",
                error_type=type(exc).__name__,
            )
            raise ToolError(str(exc)) from exc
        except Exception as exc:
            audit_logger.log_tool_call(
                tool_name=tool_name,
                tool_input=tool_input,
                duration_ms=(time.monotonic() - start_time) * 1000,
                status="failure",
                error_type=type(exc).__name__,
            )
            logger.exception("%s failed", tool_name)
            raise

        audit_logger.log_tool_call(
            tool_name=tool_name,
            tool_input=tool_input,
            snapshot_id=snapshot_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )
        return json.dumps(payload)

    def _assess(
        profile: dict[str, Any],
        vitals: list[dict[str, Any]] | None,
        cycle_history: list[dict[str, Any]] | None,
        as_of: str | None,
    ):
        return assess_patient(
            profile,
            vitals,
            cycle_history,
            as_of=_parse_day("as_of", as_of),
            max_vital_readings=settings.max_vital_readings,
            max_cycle_records=settings.max_cycle_records,
        )

    @mcp.tool
    async def assess_health_risks(
        profile: dict[str, Any],
        vitals: list[dict[str, Any]] | None = None,
        cycle_history: list[dict[str, Any]] | None = None,
        as_of: str | None = None,
    ) -> str:
        """Score cardiovascular, diabetes, general and women's health risk.

        Returns risk level, percentage, confidence, signed factor attribution
        and recommendations per condition, plus per-metric vital trends.
        womensHealth is null when no cycle history is supplied.

        Args:
            profile: Profile record (age or dateOfBirth, gender, height, weight,
                smoker, familyHistory, cholesterol...).
            vitals: Vitals records with recordedAt, most recent first.
            cycle_history: Menstrual cycle records, most recent first.
            as_of: Reference date (YYYY-MM-DD) for deriving age. Defaults to today.
        """
        tool_input = {
            "profile": profile, "vitals": vitals, "cycle_history": cycle_history, "as_of": as_of,
        }

        def compute():
            assessment = _assess(profile, vitals, cycle_history, as_of)
            payload = assessment.to_dict()
            payload["snapshotId"] = assessment.features.snapshot_id
            return payload, assessment.features.snapshot_id

        return _invoke("assess_health_risks", tool_input, compute)

    @mcp.tool
    async def simulate_health_trajectory(
        profile: dict[str, Any],
        vitals: list[dict[str, Any]] | None = None,
        cycle_history: list[dict[str, Any]] | None = None,
        horizon_months: int | None = None,
        treatment_effect: float = 0.0,
        start_month: str | None = None,
        as_of: str | None = None,
    ) -> str:
        """Project each condition's risk forward and rank treatment options.

        Blood pressure, heart rate and glucose are also projected 12 months ahead
        from their trends (vitalTrajectories) when readings are supplied.

        Args:
            profile: Profile record, as for assess_health_risks.
            vitals: Vitals records with recordedAt, most recent first.
            cycle_history: Menstrual cycle records, most recent first.
            horizon_months: Months to project (1-120). Defaults to the server setting.
            treatment_effect: Treatment strength from 0 (none) to 1 (full adherence).
            start_month: Anchor month (YYYY-MM) of the trajectories. Defaults to now.
            as_of: Reference date (YYYY-MM-DD) for deriving age.
        """
        horizon = (
            horizon_months if horizon_months is not None
            else settings.trajectory_horizon_months
        )
        tool_input = {
            "profile": profile,
            "vitals": vitals,
            "cycle_history": cycle_history,
            "horizon_months": horizon,
            "treatment_effect": treatment_effect,
            "start_month": start_month,
            "as_of": as_of,
        }

        def compute():
            assessment = _assess(profile, vitals, cycle_history, as_of)
            simulation = simulate_patient(
                assessment,
                horizon_months=horizon,
                treatment_effect=treatment_effect,
                catalog=catalog,
                policy=policy,
                start=_parse_day("start_month", start_month),
            )
            payload = simulation.to_dict()
            payload["assessment"] = assessment.to_dict()
            payload["snapshotId"] = assessment.features.snapshot_id
            return payload, assessment.features.snapshot_id

        return _invoke("simulate_health_trajectory", tool_input, compute)

    @mcp.tool
    async def analyze_vital_trend(
        vitals: list[dict[str, Any]],
        metric: str | None = None,
    ) -> str:
        """Slope, variability, direction and out-of-range readings per vital sign.

        Args:
            vitals: Vitals records with recordedAt, any order.
            metric: Restrict to one metric (systolic_bp, diastolic_bp, heart_rate,
                blood_glucose, oxygen_saturation, weight_kg).
        """
        tool_input = {"vitals": vitals, "metric": metric}

        def compute():
            trends = analyze_vital_trends(vitals, limit=settings.max_vital_readings)
            if metric is not None:
                if metric not in trends:
                    raise ValidationError(f"No {metric!r} readings in the supplied vitals")
                trends = {metric: trends[metric]}
            return {"vitalTrends": {k: v.to_dict() for k, v in trends.items()}}, None

        return _invoke("analyze_vital_trend", tool_input, compute)

    @mcp.tool
    async def explain_health_risk(
        profile: dict[str, Any],
        condition: str,
        vitals: list[dict[str, Any]] | None = None,
        cycle_history: list[dict[str, Any]] | None = None,
        sensitivity_field: str | None = None,
        as_of: str | None = None,
    ) -> str:
        """Explain one condition's risk: factor importance, what-if scenarios and a
        baseline-to-risk waterfall. Explanations are empty when the condition has
        no assessment (womens_health without cycle history).

        Args:
            profile: Profile record, as for assess_health_risks.
            condition: cardiovascular, diabetes, general_health or womens_health.
            vitals: Vitals records with recordedAt, most recent first.
            cycle_history: Menstrual cycle records, most recent first.
            sensitivity_field: Optionally also sweep one input (bmi, systolic_bp,
                blood_glucose, heart_rate, age) across its range.
            as_of: Reference date (YYYY-MM-DD) for deriving age.
        """
        tool_input = {
            "profile": profile,
            "condition": condition,
            "vitals": vitals,
            "cycle_history": cycle_history,
            "sensitivity_field": sensitivity_field,
            "as_of": as_of,
        }

        def compute():
            assessment = _assess(profile, vitals, cycle_history, as_of)
            features = assessment.features
            trends = assessment.vital_trends
            cycles = parse_cycle_history(cycle_history, limit=settings.max_cycle_records)

            payload: dict[str, Any] = {
                "condition": condition,
                "featureImportance": [
                    i.to_dict()
                    for i in feature_importance(
                        features, condition, trends=trends, cycle_history=cycles
                    )
                ],
                "counterfactuals": [
                    c.to_dict()
                    for c in counterfactuals(
                        features, condition, trends=trends, cycle_history=cycles
                    )
                ],
                "waterfall": [
                    s.to_dict()
                    for s in waterfall(
                        features, condition, trends=trends, cycle_history=cycles
                    )
                ],
            }
            risk = assessment.by_condition().get(condition)
            payload["assessment"] = risk.to_dict() if risk is not None else None
            if sensitivity_field is not None:
                payload["sensitivity"] = {
                    "field": sensitivity_field,
                    "points": [
                        p.to_dict()
                        for p in sensitivity_curve(
                            features, condition, sensitivity_field,
                            trends=trends, cycle_history=cycles,
                        )
                    ],
                }
            return payload, features.snapshot_id

        return _invoke("explain_health_risk", tool_input, compute)
