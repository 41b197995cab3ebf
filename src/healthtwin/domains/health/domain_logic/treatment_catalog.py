"""Treatment catalog loader: reads option templates from YAML."""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any

import yaml

from healthtwin.domains.health.domain_logic.risk_models import CONDITIONS, TreatmentTemplate

logger = logging.getLogger(__name__)

BUNDLED_CATALOG = Path(__file__).resolve().parent.parent / "catalogs" / "treatments.yaml"

_REQUIRED_KEYS = ("id", "name", "risk_reduction", "adherence_required", "side_effect_risk")
_PERCENT_KEYS = ("risk_reduction", "adherence_required", "side_effect_risk")


class CatalogError(Exception):
    """Raised when a treatment catalog file is missing or malformed."""


def _parse_entry(index: int, entry: Any) -> TreatmentTemplate:
    if not isinstance(entry, dict):
        raise CatalogError(f"treatments[{index}] must be a mapping")
    missing = [k for k in _REQUIRED_KEYS if entry.get(k) is None]
    if missing:
        raise CatalogError(f"treatments[{index}] is missing {', '.join(missing)}")

    for key in _PERCENT_KEYS:
        value = entry[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise CatalogError(f"treatments[{index}].{key} must be a number")
        if not math.isfinite(value) or not 0 <= value <= 100:
            raise CatalogError(f"treatments[{index}].{key}={value!r} must be within [0, 100]")

    conditions = entry.get("conditions", [])
    if isinstance(conditions, str) or not isinstance(conditions, list):
        raise CatalogError(f"treatments[{index}].conditions must be a list")
    unknown = [c for c in conditions if c not in CONDITIONS]
    if unknown:
        raise CatalogError(f"treatments[{index}] has unknown conditions {unknown}")

    return TreatmentTemplate(
        id=str(entry["id"]),
        name=str(entry["name"]),
        description=str(entry.get("description", "")).strip(),
        risk_reduction=float(entry["risk_reduction"]),
        adherence_required=float(entry["adherence_required"]),
        side_effect_risk=float(entry["side_effect_risk"]),
        conditions=tuple(conditions),
    )


def load_treatment_catalog(
    path: str | Path | None = None,
    *,
    condition: str | None = None,
) -> list[TreatmentTemplate]:
    """Parse a YAML catalog into TreatmentTemplate entries, in file order.

    Args:
        path: Catalog file. Defaults to the bundled catalog.
        condition: If given, keep only entries that apply to it.

    Raises:
        CatalogError: Unreadable file, bad structure or out-of-range values.
    """
    path = Path(path) if path else BUNDLED_CATALOG
    try:
        with open(path) as f:
            data: dict[str, Any] = yaml.safe_load(f)
    except OSError as exc:
        raise CatalogError(f"Cannot read treatment catalog {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"Invalid YAML in treatment catalog {path}: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("treatments"), list):
        raise CatalogError(f"{path} must contain a 'treatments' list")

    templates = [_parse_entry(i, entry) for i, entry in enumerate(data["treatments"])]
    logger.info("Loaded %d treatment templates from %s", len(templates), path)

    if condition is not None:
        if condition not in CONDITIONS:
            raise CatalogError(f"Unknown condition {condition!r}")
        templates = [t for t in templates if condition in t.conditions]
    return templates
