"""Deterministic feature building: host records -> PatientFeatures.

Profile and vitals records arrive in whatever shape the host stores them
(snake_case columns or camelCase API payloads). This module normalizes them
into one immutable snapshot. Missing inputs stay ``None``; present inputs
are validated against physiologically possible ranges.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

from healthtwin.domains.health.domain_logic.risk_models import (
    MAX_CYCLE_RECORDS,
    PHYSIOLOGICAL_LIMITS,
    CycleRecord,
    PatientFeatures,
    Sex,
    ValidationError,
)

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"true", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "no", "n", "0"}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _pick(record: Mapping[str, Any] | None, *keys: str) -> Any:
    """Return the first non-None value among ``keys``."""
    if not record:
        return None
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def _number(field_name: str, raw: Any) -> float | None:
    """Validate a numeric input. ``None`` stays unknown."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{field_name} must be numeric, got a boolean")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            value = float(raw)
        except ValueError:
            raise ValidationError(f"{field_name} must be numeric, got {raw!r}") from None
    elif isinstance(raw, (int, float)):
        value = float(raw)
    else:
        raise ValidationError(f"{field_name} must be numeric, got {type(raw).__name__}")

    if not math.isfinite(value):
        raise ValidationError(f"{field_name} must be finite")

    limits = PHYSIOLOGICAL_LIMITS.get(field_name)
    if limits is not None:
        lo, hi = limits
        if not lo <= value <= hi:
            raise ValidationError(
                f"{field_name}={value:g} is outside the possible range [{lo:g}, {hi:g}]"
            )
    return value


def _flag(field_name: str, raw: Any) -> bool | None:
    """Validate a yes/no input. ``None`` stays unknown."""
    if raw is None:
        return None
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if not text:
            return None
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValidationError(f"{field_name} must be a yes/no flag, got {raw!r}")


def _sex(raw: Any) -> Sex | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"gender must be a string, got {type(raw).__name__}")
    text = raw.strip().lower()
    if not text:
        return None
    if text in ("m", "male", "man"):
        return "male"
    if text in ("f", "female", "woman"):
        return "female"
    return "other"


def _parse_date(field_name: str, raw: Any) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip()[:10])
        except ValueError:
            pass
    raise ValidationError(f"{field_name} must be an ISO 8601 date, got {raw!r}")


def age_on(date_of_birth: date, as_of: date) -> int:
    """Completed years between ``date_of_birth`` and ``as_of``."""
    years = as_of.year - date_of_birth.year
    if (as_of.month, as_of.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def compute_bmi(weight_kg: float | None, height_cm: float | None) -> float | None:
    """Body mass index, one decimal. Unknown if either input is unknown.

    Callers pass range-checked values, so ``height_cm`` is strictly positive.
    """
    if weight_kg is None or height_cm is None:
        return None
    height_m = height_cm / 100
    return round(weight_kg / (height_m * height_m), 1)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_features(
    profile: Mapping[str, Any] | None,
    latest_vitals: Mapping[str, Any] | None = None,
    *,
    as_of: date | None = None,
) -> PatientFeatures:
    """Normalize a profile and the most recent vitals into PatientFeatures.

    Args:
        profile: Host profile record. Required; an empty mapping is allowed.
        latest_vitals: Most recent vitals record, or None.
        as_of: Reference date for deriving age from date of birth.

    Raises:
        ValidationError: Malformed or physiologically impossible input.
    """
    if profile is None or not isinstance(profile, Mapping):
        raise ValidationError("profile is required and must be a mapping")
    if latest_vitals is not None and not isinstance(latest_vitals, Mapping):
        raise ValidationError("latest_vitals must be a mapping")
    vitals = latest_vitals or {}

    # --- Age ---
    age = _number("age", _pick(profile, "age"))
    if age is None:
        dob_raw = _pick(profile, "date_of_birth", "dateOfBirth", "dob")
        if dob_raw is not None:
            dob = _parse_date("date_of_birth", dob_raw)
            age = _number("age", age_on(dob, as_of or date.today()))

    # --- Body measurements ---
    height = _number("height_cm", _pick(profile, "height_cm", "height"))
    weight = _number("weight_kg", _pick(profile, "weight_kg", "weight"))
    if weight is None:
        weight = _number("weight_kg", _pick(vitals, "weight_kg", "weight"))

    # --- Cholesterol panel (nested or flat) ---
    chol = _pick(profile, "cholesterol") or {}
    if not isinstance(chol, Mapping):
        raise ValidationError("cholesterol must be a mapping of total/hdl/ldl")
    total_chol = _number(
        "total_cholesterol",
        _pick(chol, "total") if chol else _pick(profile, "total_cholesterol", "totalCholesterol"),
    )
    hdl = _number(
        "hdl_cholesterol",
        _pick(chol, "hdl") if chol else _pick(profile, "hdl_cholesterol", "hdlCholesterol"),
    )
    ldl = _number(
        "ldl_cholesterol",
        _pick(chol, "ldl") if chol else _pick(profile, "ldl_cholesterol", "ldlCholesterol"),
    )

    # --- Family history (nested or flat) ---
    history = _pick(profile, "family_history", "familyHistory") or {}
    if not isinstance(history, Mapping):
        raise ValidationError("family_history must be a mapping")

    features = PatientFeatures(
        age=age,
        sex=_sex(_pick(profile, "gender", "sex")),
        height_cm=height,
        weight_kg=weight,
        bmi=compute_bmi(weight, height),
        systolic_bp=_number(
            "systolic_bp",
            _pick(vitals, "blood_pressure_systolic", "systolic", "systolic_bp"),
        ),
        diastolic_bp=_number(
            "diastolic_bp",
            _pick(vitals, "blood_pressure_diastolic", "diastolic", "diastolic_bp"),
        ),
        heart_rate=_number("heart_rate", _pick(vitals, "heart_rate", "heartRate")),
        blood_glucose=_number(
            "blood_glucose", _pick(vitals, "blood_glucose", "bloodGlucose", "glucose")
        ),
        oxygen_saturation=_number(
            "oxygen_saturation", _pick(vitals, "oxygen_saturation", "oxygenSaturation", "spo2")
        ),
        total_cholesterol=total_chol,
        hdl_cholesterol=hdl,
        ldl_cholesterol=ldl,
        smoker=_flag("smoker", _pick(profile, "smoker", "smoking", "isSmoker")),
        physically_active=_flag(
            "physically_active", _pick(profile, "physically_active", "physicallyActive")
        ),
        family_history_diabetes=_flag(
            "family_history_diabetes",
            _pick(history, "diabetes") if history else _pick(profile, "family_history_diabetes"),
        ),
        family_history_heart_disease=_flag(
            "family_history_heart_disease",
            (
                _pick(history, "heart_disease", "heartDisease")
                if history
                else _pick(profile, "family_history_heart_disease")
            ),
        ),
        family_history_hypertension=_flag(
            "family_history_hypertension",
            (
                _pick(history, "hypertension")
                if history
                else _pick(profile, "family_history_hypertension")
            ),
        ),
        blood_type=_pick(profile, "blood_type", "bloodType"),
    )

    logger.debug(
        "Built features %s (%d known fields)",
        features.snapshot_id[:12],
        len(features.known_fields()),
    )
    return features


def validate_features(features: PatientFeatures) -> None:
    """Re-check a directly constructed snapshot against the input ranges.

    Scorers accept PatientFeatures from any caller, not only from
    :func:`build_features`.
    """
    if not isinstance(features, PatientFeatures):
        raise ValidationError(
            f"features must be PatientFeatures, got {type(features).__name__}"
        )
    for name in PHYSIOLOGICAL_LIMITS:
        if hasattr(features, name):
            _number(name, getattr(features, name))
    if features.bmi is not None:
        bmi = _number("bmi", features.bmi)
        if bmi is not None and bmi <= 0:
            raise ValidationError("bmi must be positive")
    for name in (
        "smoker",
        "physically_active",
        "family_history_diabetes",
        "family_history_heart_disease",
        "family_history_hypertension",
    ):
        value = getattr(features, name)
        if value is not None and not isinstance(value, bool):
            raise ValidationError(f"{name} must be a boolean or None")
    if features.sex not in (None, "male", "female", "other"):
        raise ValidationError(f"sex must be male, female or other, got {features.sex!r}")


def validate_cycles(cycles: Sequence[CycleRecord]) -> None:
    """Range-check directly constructed cycle records, as for features."""
    for index, cycle in enumerate(cycles):
        if not isinstance(cycle, CycleRecord):
            raise ValidationError(f"cycle_history[{index}] must be a CycleRecord")
        try:
            _number("cycle_length", cycle.cycle_length)
            _number("period_length", cycle.period_length)
        except ValidationError as exc:
            raise ValidationError(f"cycle_history[{index}]: {exc}") from None
        if cycle.flow_intensity is not None and not isinstance(cycle.flow_intensity, str):
            raise ValidationError(f"cycle_history[{index}].flow_intensity must be a string")
        if not all(isinstance(s, str) for s in cycle.symptoms):
            raise ValidationError(f"cycle_history[{index}].symptoms must be strings")


def parse_cycle_history(
    records: Sequence[Mapping[str, Any]] | None,
    *,
    limit: int = MAX_CYCLE_RECORDS,
) -> tuple[CycleRecord, ...]:
    """Normalize a most-recent-first cycle history, keeping ``limit`` records."""
    if not records:
        return ()
    cycles: list[CycleRecord] = []
    for index, record in enumerate(list(records)[:limit]):
        if not isinstance(record, Mapping):
            raise ValidationError(f"cycle_history[{index}] must be a mapping")
        symptoms = _pick(record, "symptoms") or []
        if isinstance(symptoms, str) or not all(isinstance(s, str) for s in symptoms):
            raise ValidationError(f"cycle_history[{index}].symptoms must be a list of strings")
        flow = _pick(record, "flow_intensity", "flowIntensity")
        if flow is not None and not isinstance(flow, str):
            raise ValidationError(f"cycle_history[{index}].flow_intensity must be a string")
        cycles.append(CycleRecord(
            cycle_length=_number("cycle_length", _pick(record, "cycle_length", "cycleLength")),
            period_length=_number(
                "period_length", _pick(record, "period_length", "periodLength")
            ),
            flow_intensity=flow.strip().lower() if flow else None,
            symptoms=tuple(symptoms),
        ))
    return tuple(cycles)
