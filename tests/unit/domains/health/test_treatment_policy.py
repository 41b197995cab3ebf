"""Tests for the Q-value treatment ranker."""

from __future__ import annotations

import logging
import random

import pytest

from healthtwin.domains.health.domain_logic.risk_models import (
    Trajectory,
    TrajectoryPoint,
    ValidationError,
)
from healthtwin.domains.health.domain_logic.treatment_policy import PolicyConfig, q_value, rank


def _trajectory(final: float = 40.0) -> Trajectory:
    points = (
        TrajectoryPoint("2026-03", 0, 35.0, 30.0, 45.0, 0.85),
        TrajectoryPoint("2026-04", 1, final, final - 5, final + 5, 0.8),
    )
    return Trajectory("cardiovascular", points, 1, 0.0, "snap")


class TestQValue:
    def test_formula(self, template_factory):
        template = template_factory("a", risk_reduction=20, adherence_required=50, side_effect_risk=5)
        # 20 * (1 - 0.3 * 0.5) - 0.5 * 32 - 0.4 * 5
        assert q_value(template, 32.0, PolicyConfig()) == pytest.approx(-1.0)

    def test_harder_regimen_discounts_benefit(self, template_factory):
        easy = template_factory("easy", adherence_required=10)
        hard = template_factory("hard", adherence_required=90)
        assert q_value(easy, 30.0, PolicyConfig()) > q_value(hard, 30.0, PolicyConfig())


class TestRank:
    def test_expected_outcome_from_final_point(self, template_factory):
        [option] = rank(_trajectory(40.0), [template_factory("a", risk_reduction=25)])
        assert option.expected_outcome == 30.0

    def test_sorted_by_q_value(self, template_factory):
        catalog = [
            template_factory("weak", risk_reduction=5),
            template_factory("strong", risk_reduction=30),
            template_factory("medium", risk_reduction=15),
        ]
        ids = [o.id for o in rank(_trajectory(), catalog)]
        assert ids == ["strong", "medium", "weak"]

    def test_top_k_recommended(self, template_factory):
        catalog = [template_factory(f"t{i}", risk_reduction=5 * i) for i in range(6)]
        ranked = rank(_trajectory(), catalog, policy=PolicyConfig(top_k=2))
        assert [o.recommended for o in ranked] == [True, True, False, False, False, False]

    def test_default_top_k_is_three(self, template_factory):
        catalog = [template_factory(f"t{i}", risk_reduction=5 * i) for i in range(6)]
        assert sum(o.recommended for o in rank(_trajectory(), catalog)) == 3

    def test_top_k_larger_than_catalog(self, template_factory):
        ranked = rank(_trajectory(), [template_factory("only")], policy=PolicyConfig(top_k=5))
        assert ranked[0].recommended

    def test_empty_catalog(self):
        assert rank(_trajectory(), []) == ()

    def test_duplicates_keep_first(self, template_factory, caplog):
        catalog = [
            template_factory("dup", risk_reduction=10),
            template_factory("other", risk_reduction=12),
            template_factory("dup", risk_reduction=35),
        ]
        with caplog.at_level(logging.DEBUG):
            ranked = rank(_trajectory(), catalog)
        assert [o.id for o in ranked].count("dup") == 1
        assert next(o for o in ranked if o.id == "dup").risk_reduction == 10
        assert "duplicate" in caplog.text

    def test_tie_broken_by_risk_reduction(self, template_factory):
        # Both score q = 4.0 against a final risk of 40.
        low_rr = template_factory("low_rr", risk_reduction=20, adherence_required=0,
                                  side_effect_risk=0)
        high_rr = template_factory("high_rr", risk_reduction=30, adherence_required=0,
                                   side_effect_risk=30)
        ranked = rank(_trajectory(40.0), [low_rr, high_rr])
        assert ranked[0].q_value == ranked[1].q_value == 4.0
        assert [o.id for o in ranked] == ["high_rr", "low_rr"]

    def test_tie_broken_by_side_effect_risk(self, template_factory):
        # Both score q = 0.0 with equal risk reduction.
        risky = template_factory("risky", risk_reduction=20, adherence_required=0,
                                 side_effect_risk=10)
        gentle = template_factory("gentle", risk_reduction=20, adherence_required=50,
                                  side_effect_risk=2.5)
        ranked = rank(_trajectory(40.0), [risky, gentle])
        assert ranked[0].q_value == ranked[1].q_value == 0.0
        assert [o.id for o in ranked] == ["gentle", "risky"]

    def test_full_tie_keeps_catalog_order(self, template_factory):
        catalog = [template_factory("first"), template_factory("second")]
        assert [o.id for o in rank(_trajectory(), catalog)] == ["first", "second"]

    def test_deterministic(self, template_factory):
        catalog = [template_factory(f"t{i}", risk_reduction=i * 7 % 40) for i in range(8)]
        assert rank(_trajectory(), catalog) == rank(_trajectory(), catalog)


class TestRankingConsistency:
    def test_recommended_partition_random_catalogs(self, template_factory):
        rng = random.Random(7)
        for _ in range(200):
            catalog = [
                template_factory(
                    f"t{rng.randint(0, 12)}",
                    risk_reduction=rng.randint(0, 100),
                    adherence_required=rng.randint(0, 100),
                    side_effect_risk=rng.randint(0, 100),
                )
                for _ in range(rng.randint(0, 10))
            ]
            ranked = rank(
                _trajectory(rng.uniform(0, 100)), catalog,
                policy=PolicyConfig(top_k=rng.randint(0, 4)),
            )
            recommended = [o.q_value for o in ranked if o.recommended]
            others = [o.q_value for o in ranked if not o.recommended]
            if recommended and others:
                assert min(recommended) >= max(others)
            assert len({o.id for o in ranked}) == len(ranked)
            # recommended options form a prefix
            flags = [o.recommended for o in ranked]
            assert flags == sorted(flags, reverse=True)


class TestRankValidation:
    @pytest.mark.parametrize("field_name", ["risk_reduction", "adherence_required", "side_effect_risk"])
    @pytest.mark.parametrize("value", [-1, 101, float("nan")])
    def test_out_of_range_template(self, template_factory, field_name, value):
        template = template_factory("bad", **{field_name: value})
        with pytest.raises(ValidationError, match=field_name):
            rank(_trajectory(), [template])

    def test_non_template_rejected(self):
        with pytest.raises(ValidationError):
            rank(_trajectory(), [{"id": "x"}])

    def test_negative_top_k_rejected(self):
        with pytest.raises(ValidationError, match="top_k"):
            PolicyConfig(top_k=-1)
