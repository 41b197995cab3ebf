"""Tests for the per-condition risk scorers.

Weight tables and band edges are calibration defaults. Tests that pin a
specific percentage or level are checking calibration, not correctness;
property tests (bounds, monotonicity, determinism) must hold for any table.
"""

from __future__ import annotations

import random
from dataclasses import replace

import pytest

from healthtwin.domains.health.domain_logic.feature_builder import parse_cycle_history
from healthtwin.domains.health.domain_logic.risk_models import (
    PatientFeatures,
    TrendSummary,
    ValidationError,
)
from healthtwin.domains.health.domain_logic.risk_scorers import (
    SCORER_SPECS,
    SCORERS,
    cycle_inputs,
    score_cardiovascular,
    score_condition,
    score_diabetes,
    score_general_health,
    score_womens_health,
)

UNIFORM_SCORERS = [score_cardiovascular, score_diabetes, score_general_health]


def _random_features(rng: random.Random) -> PatientFeatures:
    def maybe(value):
        return value if rng.random() < 0.8 else None

    return PatientFeatures(
        age=maybe(rng.randint(18, 95)),
        sex=rng.choice(["male", "female", "other", None]),
        bmi=maybe(round(rng.uniform(15, 50), 1)),
        systolic_bp=maybe(rng.randint(80, 220)),
        diastolic_bp=maybe(rng.randint(50, 130)),
        heart_rate=maybe(rng.randint(40, 140)),
        blood_glucose=maybe(rng.randint(60, 350)),
        oxygen_saturation=maybe(rng.randint(85, 100)),
        total_cholesterol=maybe(rng.randint(120, 320)),
        hdl_cholesterol=maybe(rng.randint(20, 100)),
        smoker=rng.choice([True, False, None]),
        physically_active=rng.choice([True, False, None]),
        family_history_diabetes=rng.choice([True, False, None]),
        family_history_heart_disease=rng.choice([True, False, None]),
        family_history_hypertension=rng.choice([True, False, None]),
    )


def _trend(metric: str, slope: float | None) -> TrendSummary:
    if slope is None:
        return TrendSummary(metric, "insufficient_data", 1, "insufficient_data")
    return TrendSummary(
        metric, "ok", 5, "increasing" if slope > 0 else "decreasing",
        current=140, mean=135, slope_per_month=slope, std_dev=4, volatility=0.03,
    )


# ---------------------------------------------------------------------------
# Concrete scenarios
# ---------------------------------------------------------------------------

class TestCardiovascularScenario:
    def test_hypertensive_obese_smoker_is_high(self, high_risk_features):
        assessment = score_cardiovascular(high_risk_features)
        assert assessment.risk_level == "high"
        assert assessment.risk_percentage > 25

    def test_factors_include_systolic_and_bmi(self, high_risk_features):
        factors = {f.key: f for f in score_cardiovascular(high_risk_features).factors}
        assert factors["systolic_bp"].direction == "increases"
        assert factors["systolic_bp"].contribution > 0
        assert factors["bmi"].direction == "increases"
        assert factors["smoker"].direction == "increases"

    def test_reference_valued_factor_is_omitted(self, high_risk_features):
        # Age 45 sits exactly on the reference.
        keys = [f.key for f in score_cardiovascular(high_risk_features).factors]
        assert "age" not in keys

    def test_absent_family_history_lowers_risk(self, high_risk_features):
        factors = {f.key: f for f in score_cardiovascular(high_risk_features).factors}
        assert factors["family_history_heart_disease"].direction == "decreases"

    def test_generated_from_snapshot(self, high_risk_features):
        assessment = score_cardiovascular(high_risk_features)
        assert assessment.generated_from == high_risk_features.snapshot_id

    def test_calibration_value(self, high_risk_features):
        """Calibration, not correctness: pins the default weight table."""
        assert score_cardiovascular(high_risk_features).risk_percentage == pytest.approx(32.0)

    def test_smoking_recommendation(self, high_risk_features):
        recs = score_cardiovascular(high_risk_features).recommendations
        assert any("Smoking" in r for r in recs)
        assert any("cardiology" in r for r in recs)


class TestWomensHealthScenario:
    def test_empty_history_is_none(self, high_risk_features):
        assert score_womens_health(high_risk_features, ()) is None
        assert score_womens_health(high_risk_features, []) is None

    def test_irregular_cycles_flag_irregularity(self, irregular_cycles):
        cycles = parse_cycle_history(irregular_cycles)
        assessment = score_womens_health(PatientFeatures(sex="female"), cycles)
        assert assessment is not None
        factors = {f.key: f for f in assessment.factors}
        assert "cycle_irregularity" in factors
        assert factors["cycle_irregularity"].direction == "increases"

    def test_irregular_cycles_flag_pcos_indicators(self, irregular_cycles):
        cycles = parse_cycle_history(irregular_cycles)
        factors = {f.key for f in score_womens_health(PatientFeatures(), cycles).factors}
        assert "pcos_symptom_share" in factors
        assert "heavy_flow_share" in factors

    def test_regular_cycles_are_low(self, regular_cycles):
        assessment = score_womens_health(PatientFeatures(sex="female"), regular_cycles)
        assert assessment.risk_level == "low"
        keys = {f.key for f in assessment.factors}
        assert "cycle_irregularity" not in keys
        assert "cycle_length" not in keys

    def test_single_cycle_has_no_irregularity(self):
        cycles = parse_cycle_history([{"cycleLength": 45}])
        assert cycle_inputs(cycles)["cycle_irregularity"] is None

    def test_no_reported_symptoms_is_unknown_not_zero(self, regular_cycles):
        assert cycle_inputs(regular_cycles)["pcos_symptom_share"] is None

    def test_rejects_raw_records(self):
        with pytest.raises(ValidationError):
            score_womens_health(PatientFeatures(), [{"cycleLength": 28}])

    @pytest.mark.parametrize(
        ("fields", "match"),
        [
            ({"cycle_length": -5}, "cycle_length"),
            ({"cycle_length": 400}, "cycle_length"),
            ({"cycle_length": float("nan")}, "cycle_length"),
            ({"period_length": 90}, "period_length"),
            ({"period_length": True}, "period_length"),
            ({"flow_intensity": 3}, "flow_intensity"),
        ],
    )
    def test_out_of_range_cycle_rejected(self, regular_cycles, fields, match):
        bad = replace(regular_cycles[0], **fields)
        with pytest.raises(ValidationError, match=match):
            score_womens_health(PatientFeatures(), (*regular_cycles[1:], bad))

    def test_error_names_cycle_index(self, regular_cycles):
        bad = replace(regular_cycles[0], cycle_length=-5)
        with pytest.raises(ValidationError, match=r"cycle_history\[1\]"):
            score_womens_health(PatientFeatures(), (regular_cycles[0], bad))


# ---------------------------------------------------------------------------
# Missing data
# ---------------------------------------------------------------------------

class TestMissingData:
    @pytest.mark.parametrize("scorer", UNIFORM_SCORERS)
    def test_all_unknown_still_scores(self, scorer, empty_features):
        assessment = scorer(empty_features)
        assert assessment is not None
        assert assessment.factors == ()
        assert 0 <= assessment.risk_percentage <= 100

    @pytest.mark.parametrize("scorer", UNIFORM_SCORERS)
    def test_all_unknown_is_low(self, scorer, empty_features):
        """Calibration, not correctness: no data should not read as elevated risk."""
        assert scorer(empty_features).risk_level == "low"

    @pytest.mark.parametrize("scorer", UNIFORM_SCORERS)
    def test_missing_data_lowers_confidence(self, scorer, empty_features, high_risk_features):
        assert scorer(empty_features).confidence < scorer(high_risk_features).confidence

    def test_base_confidences(self, empty_features):
        assert score_cardiovascular(empty_features).confidence == pytest.approx(0.425)
        assert score_diabetes(empty_features).confidence == pytest.approx(0.41)
        assert score_general_health(empty_features).confidence == pytest.approx(0.44)

    def test_other_sex_is_unknown(self):
        assessment = score_cardiovascular(PatientFeatures(sex="other"))
        assert assessment.factors == ()


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

class TestProperties:
    def test_risk_always_in_range(self):
        rng = random.Random(7)
        for _ in range(300):
            features = _random_features(rng)
            for scorer in UNIFORM_SCORERS:
                pct = scorer(features).risk_percentage
                assert 0.0 <= pct <= 100.0

    def test_extreme_inputs_saturate_without_overflow(self):
        worst = PatientFeatures(
            age=130, sex="male", bmi=150, systolic_bp=300, diastolic_bp=200,
            heart_rate=300, blood_glucose=1000, oxygen_saturation=50,
            total_cholesterol=1000, hdl_cholesterol=5, smoker=True,
            physically_active=False, family_history_diabetes=True,
            family_history_heart_disease=True, family_history_hypertension=True,
        )
        for scorer in UNIFORM_SCORERS:
            assessment = scorer(worst)
            assert assessment.risk_percentage <= 100.0
            assert assessment.risk_level == "critical"

    @pytest.mark.parametrize(
        ("field_name", "values"),
        [
            ("systolic_bp", range(90, 221, 10)),
            ("blood_glucose", range(60, 341, 20)),
            ("age", range(20, 96, 5)),
            ("total_cholesterol", range(120, 321, 20)),
        ],
    )
    @pytest.mark.parametrize("scorer", UNIFORM_SCORERS)
    def test_monotonic_in_adverse_factor(self, scorer, field_name, values):
        rng = random.Random(7)
        for _ in range(40):
            base = _random_features(rng)
            risks = [
                scorer(replace(base, **{field_name: float(v)})).risk_percentage
                for v in values
            ]
            assert risks == sorted(risks), f"{scorer.__name__} not monotonic in {field_name}"

    @pytest.mark.parametrize("scorer", [score_cardiovascular, score_diabetes])
    def test_monotonic_in_bmi(self, scorer):
        rng = random.Random(11)
        for _ in range(40):
            base = _random_features(rng)
            risks = [scorer(replace(base, bmi=float(b))).risk_percentage for b in range(16, 51, 2)]
            assert risks == sorted(risks)

    def test_smoking_never_lowers_risk(self):
        rng = random.Random(3)
        for _ in range(50):
            base = _random_features(rng)
            for scorer in UNIFORM_SCORERS:
                assert (
                    scorer(replace(base, smoker=True)).risk_percentage
                    >= scorer(replace(base, smoker=False)).risk_percentage
                )

    def test_deterministic(self):
        rng = random.Random(5)
        for _ in range(20):
            features = _random_features(rng)
            for scorer in UNIFORM_SCORERS:
                assert scorer(features) == scorer(features)

    def test_factors_follow_table_order(self, high_risk_features):
        order = [f.key for f in SCORER_SPECS["cardiovascular"].factors]
        keys = [f.key for f in score_cardiovascular(high_risk_features).factors]
        assert keys == sorted(keys, key=order.index)


# ---------------------------------------------------------------------------
# Trends & dispatch
# ---------------------------------------------------------------------------

class TestTrendFactors:
    def test_rising_systolic_trend_adds_risk(self, high_risk_features):
        trends = {"systolic_bp": _trend("systolic_bp", 3.0)}
        with_trend = score_cardiovascular(high_risk_features, trends)
        without = score_cardiovascular(high_risk_features)
        assert with_trend.risk_percentage > without.risk_percentage
        assert "systolic_trend" in {f.key for f in with_trend.factors}

    def test_insufficient_trend_ignored(self, high_risk_features):
        trends = {"systolic_bp": _trend("systolic_bp", None)}
        assert score_cardiovascular(high_risk_features, trends) == score_cardiovascular(
            high_risk_features
        )

    def test_glucose_trend_feeds_diabetes(self, high_risk_features):
        trends = {"blood_glucose": _trend("blood_glucose", -5.0)}
        factors = {f.key: f for f in score_diabetes(high_risk_features, trends).factors}
        assert factors["glucose_trend"].direction == "decreases"


class TestDispatch:
    def test_scorers_table(self):
        assert set(SCORERS) == {"cardiovascular", "diabetes", "general_health"}

    def test_score_condition_matches_scorer(self, high_risk_features):
        assert score_condition("diabetes", high_risk_features) == score_diabetes(
            high_risk_features
        )

    def test_score_condition_womens_without_history(self, high_risk_features):
        assert score_condition("womens_health", high_risk_features) is None

    def test_unknown_condition(self, high_risk_features):
        with pytest.raises(ValidationError, match="Unknown condition"):
            score_condition("oncology", high_risk_features)

    @pytest.mark.parametrize("age", [-1, 131])
    def test_invalid_age_rejected(self, age):
        with pytest.raises(ValidationError, match="age"):
            score_cardiovascular(PatientFeatures(age=age))

    def test_general_health_uses_wider_bands(self):
        assert SCORER_SPECS["general_health"].bands.moderate == 20
