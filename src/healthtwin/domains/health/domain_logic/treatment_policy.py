"""Expected-value ("Q-value") ranking of treatment options.

A simplified heuristic, not a learned value function: benefit is the
relative risk reduction discounted by how demanding the regimen is, minus
penalties for the risk that remains and for side effects.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, replace

from healthtwin.domains.health.domain_logic.risk_models import (
    Trajectory,
    TreatmentOption,
    TreatmentTemplate,
    ValidationError,
)
from healthtwin.domains.health.domain_logic.scoring import round_percentage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyConfig:
    """Weights of the Q-value formula.

    q = w_benefit * rr * (1 - adherence_discount * adherence / 100)
        - w_remaining * expected_outcome
        - w_side_effect * side_effect_risk
    """

    w_benefit: float = 1.0
    adherence_discount: float = 0.3
    w_remaining: float = 0.5
    w_side_effect: float = 0.4
    top_k: int = 3

    def __post_init__(self) -> None:
        if isinstance(self.top_k, bool) or not isinstance(self.top_k, int) or self.top_k < 0:
            raise ValidationError(f"top_k must be a non-negative integer, got {self.top_k!r}")
        if not 0.0 <= self.adherence_discount <= 1.0:
            raise ValidationError("adherence_discount must be within [0, 1]")


def _check_template(template: TreatmentTemplate) -> None:
    if not isinstance(template, TreatmentTemplate):
        raise ValidationError(
            f"catalog entries must be TreatmentTemplate, got {type(template).__name__}"
        )
    if not template.id:
        raise ValidationError("treatment id must be a non-empty string")
    for name in ("risk_reduction", "adherence_required", "side_effect_risk"):
        value = getattr(template, name)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{template.id}.{name} must be a number")
        if not math.isfinite(value) or not 0.0 <= value <= 100.0:
            raise ValidationError(f"{template.id}.{name}={value!r} must be within [0, 100]")


def q_value(template: TreatmentTemplate, expected_outcome: float, policy: PolicyConfig) -> float:
    benefit = (
        policy.w_benefit
        * template.risk_reduction
        * (1.0 - policy.adherence_discount * template.adherence_required / 100.0)
    )
    return round(
        benefit
        - policy.w_remaining * expected_outcome
        - policy.w_side_effect * template.side_effect_risk,
        2,
    )


def rank(
    trajectory: Trajectory,
    catalog: Iterable[TreatmentTemplate],
    *,
    policy: PolicyConfig | None = None,
) -> tuple[TreatmentOption, ...]:
    """Score, deduplicate and order ``catalog`` against ``trajectory``.

    Args:
        trajectory: Untreated projection; its final point is the baseline risk.
        catalog: Treatment templates. The first entry with a given id wins.
        policy: Formula weights and ``top_k``. Defaults to ``PolicyConfig()``.

    Returns:
        Options ordered by q_value desc, risk_reduction desc, side_effect_risk
        asc, then catalog order. The first ``top_k`` are recommended.
    """
    policy = policy or PolicyConfig()
    baseline = trajectory.final.predicted

    seen: set[str] = set()
    scored: list[tuple[int, TreatmentOption]] = []
    for index, template in enumerate(catalog):
        _check_template(template)
        if template.id in seen:
            logger.debug("Dropping duplicate treatment id %r at position %d", template.id, index)
            continue
        seen.add(template.id)

        expected = round_percentage(baseline * (1.0 - template.risk_reduction / 100.0))
        scored.append((index, TreatmentOption(
            id=template.id,
            name=template.name,
            description=template.description,
            expected_outcome=expected,
            risk_reduction=float(template.risk_reduction),
            adherence_required=float(template.adherence_required),
            side_effect_risk=float(template.side_effect_risk),
            q_value=q_value(template, expected, policy),
            recommended=False,
        )))

    scored.sort(key=lambda item: (
        -item[1].q_value, -item[1].risk_reduction, item[1].side_effect_risk, item[0],
    ))

    ranked = []
    for position, (_, option) in enumerate(scored):
        if position < policy.top_k:
            option = replace(option, recommended=True)
        ranked.append(option)
    return tuple(ranked)
