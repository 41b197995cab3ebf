"""Shared test fixtures for Health Twin tests."""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "TWIN_HOST",
        "TWIN_PORT",
        "TWIN_LOG_LEVEL",
        "TWIN_ALLOW_INSECURE_BIND",
        "TRAJECTORY_HORIZON_MONTHS",
        "POLICY_TOP_K",
        "TREATMENT_CATALOG_PATH",
        "MAX_VITAL_READINGS",
        "MAX_CYCLE_RECORDS",
    ):
        monkeypatch.delenv(name, raising=False)

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from healthtwin.domains.health.domain_logic.risk_models import (  # noqa: E402
    CycleRecord,
    PatientFeatures,
    TreatmentTemplate,
)

AS_OF = date(2026, 3, 15)


# ---------------------------------------------------------------------------
# Patient records (host shapes)
# ---------------------------------------------------------------------------

@pytest.fixture
def profile() -> dict[str, Any]:
    """A 52-year-old male smoker with a family history of diabetes."""
    return {
        "dateOfBirth": "1973-06-02",
        "gender": "male",
        "height": 178,
        "weight": 92,
        "bloodType": "O+",
        "smoker": True,
        "physicallyActive": False,
        "familyHistory": {"diabetes": True, "heartDisease": False, "hypertension": True},
        "cholesterol": {"total": 225, "hdl": 42, "ldl": 150},
    }


def make_vitals(
    systolic: list[float],
    *,
    start: str = "2026-01-01",
    step_days: int = 7,
    **extra: list[float],
) -> list[dict[str, Any]]:
    """Weekly vitals records, returned most recent first (host order)."""
    first = date.fromisoformat(start)
    records = []
    for i, value in enumerate(systolic):
        day = date.fromordinal(first.toordinal() + i * step_days)
        record: dict[str, Any] = {
            "recordedAt": f"{day.isoformat()}T08:00:00Z",
            "systolic": value,
        }
        for key, values in extra.items():
            record[key] = values[i]
        records.append(record)
    return list(reversed(records))


@pytest.fixture
def vitals() -> list[dict[str, Any]]:
    return make_vitals(
        [138, 141, 143, 146, 149],
        diastolic=[86, 88, 88, 90, 91],
        heartRate=[74, 76, 75, 78, 77],
        glucose=[104, 106, 109, 111, 112],
        oxygenSaturation=[97, 97, 96, 97, 96],
    )


@pytest.fixture
def irregular_cycles() -> list[dict[str, Any]]:
    return [
        {"cycleLength": 21, "periodLength": 9, "flowIntensity": "heavy",
         "symptoms": ["acne", "cramps"]},
        {"cycleLength": 45, "periodLength": 4, "flowIntensity": "light", "symptoms": []},
        {"cycleLength": 30, "periodLength": 6, "flowIntensity": "heavy",
         "symptoms": ["excessive hair growth"]},
    ]


# ---------------------------------------------------------------------------
# Engine objects
# ---------------------------------------------------------------------------

@pytest.fixture
def high_risk_features() -> PatientFeatures:
    """45 years, systolic 150, BMI 32, smoker, no family history."""
    return PatientFeatures(
        age=45,
        sex="male",
        systolic_bp=150,
        bmi=32.0,
        smoker=True,
        family_history_diabetes=False,
        family_history_heart_disease=False,
        family_history_hypertension=False,
    )


@pytest.fixture
def empty_features() -> PatientFeatures:
    return PatientFeatures()


@pytest.fixture
def regular_cycles() -> tuple[CycleRecord, ...]:
    return tuple(
        CycleRecord(cycle_length=length, period_length=5, flow_intensity="medium")
        for length in (28, 29, 27, 28)
    )


def make_template(
    id: str,
    risk_reduction: float = 20,
    adherence_required: float = 50,
    side_effect_risk: float = 5,
    conditions: tuple[str, ...] = ("cardiovascular",),
) -> TreatmentTemplate:
    """Create a treatment template with sensible defaults."""
    return TreatmentTemplate(
        id=id,
        name=f"Treatment {id}",
        description=f"Test treatment {id}",
        risk_reduction=risk_reduction,
        adherence_required=adherence_required,
        side_effect_risk=side_effect_risk,
        conditions=conditions,
    )


@pytest.fixture
def template_factory():
    return make_template


@pytest.fixture
def vitals_factory():
    return make_vitals


@pytest.fixture
def as_of() -> date:
    return AS_OF
