"""Longitudinal trend analysis over vital-sign series.

Computes slope, variability, direction and range anomalies for one metric.
Readings are sorted oldest-first before anything is computed, so callers may
pass host records in any order.
"""

from __future__ import annotations

import logging
import math
import statistics
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from healthtwin.domains.health.domain_logic.risk_models import (
    MAX_VITAL_READINGS,
    Anomaly,
    TrendSummary,
    ValidationError,
)

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30.0

# Relative change over the observed span that counts as a real movement.
DIRECTION_THRESHOLD = 0.05

# Plausible resting ranges; readings outside are flagged, not rejected.
ANOMALY_RANGES: dict[str, tuple[float, float]] = {
    "systolic_bp": (70, 200),
    "diastolic_bp": (40, 120),
    "heart_rate": (40, 150),
    "blood_glucose": (54, 300),
    "oxygen_saturation": (90, 100),
    "weight_kg": (30, 300),
}

# Host vitals columns feeding each metric series.
VITAL_METRICS: dict[str, tuple[str, ...]] = {
    "systolic_bp": ("blood_pressure_systolic", "systolic", "systolic_bp"),
    "diastolic_bp": ("blood_pressure_diastolic", "diastolic", "diastolic_bp"),
    "heart_rate": ("heart_rate", "heartRate"),
    "blood_glucose": ("blood_glucose", "bloodGlucose", "glucose"),
    "oxygen_saturation": ("oxygen_saturation", "oxygenSaturation", "spo2"),
    "weight_kg": ("weight_kg", "weight"),
}

_TIMESTAMP_KEYS = ("recorded_at", "recordedAt", "created_at", "createdAt", "timestamp")


@dataclass(frozen=True)
class TimedValue:
    """A single reading of one metric."""

    recorded_at: datetime
    value: float | None


# ---------------------------------------------------------------------------
# Input coercion
# ---------------------------------------------------------------------------

def parse_timestamp(raw: Any) -> datetime:
    """ISO 8601 string or datetime -> aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Malformed timestamp {raw!r}") from None
    else:
        raise ValidationError(f"Timestamp must be an ISO 8601 string, got {raw!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _reading_value(metric: str, raw: Any) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, str) and not raw.strip():
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ValidationError(f"{metric} reading must be numeric, got {raw!r}")
    try:
        value = float(raw)
    except ValueError:
        raise ValidationError(f"{metric} reading must be numeric, got {raw!r}") from None
    if not math.isfinite(value):
        raise ValidationError(f"{metric} reading must be finite")
    return value


def _coerce(metric: str, reading: TimedValue | Sequence[Any]) -> TimedValue:
    if isinstance(reading, TimedValue):
        recorded_at, raw = reading.recorded_at, reading.value
    else:
        try:
            recorded_at, raw = reading
        except (TypeError, ValueError):
            raise ValidationError(
                f"{metric} readings must be (recorded_at, value) pairs"
            ) from None
    return TimedValue(parse_timestamp(recorded_at), _reading_value(metric, raw))


def _anomalies(metric: str, series: Sequence[TimedValue]) -> tuple[Anomaly, ...]:
    limits = ANOMALY_RANGES.get(metric)
    if limits is None:
        return ()
    lo, hi = limits
    found = []
    for reading in series:
        if reading.value < lo:
            kind = "below_range"
        elif reading.value > hi:
            kind = "above_range"
        else:
            continue
        found.append(Anomaly(reading.recorded_at.isoformat(), reading.value, kind))
    return tuple(found)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def analyze_trend(
    readings: Iterable[TimedValue | Sequence[Any]],
    metric: str,
) -> TrendSummary:
    """Compute trend statistics for a single metric.

    Args:
        readings: ``TimedValue`` objects or ``(recorded_at, value)`` pairs,
            in any order. Readings with an unknown value are skipped.
        metric: Metric name, used for anomaly ranges and labelling.

    Returns:
        TrendSummary. With fewer than two known readings, or all readings
        at the same instant, ``status`` is ``insufficient_data`` and
        ``slope_per_month`` is None.

    Raises:
        ValidationError: Malformed timestamp or non-numeric value.
    """
    coerced = [_coerce(metric, r) for r in readings]
    series = sorted(
        (r for r in coerced if r.value is not None), key=lambda r: r.recorded_at
    )
    anomalies = _anomalies(metric, series)

    if not series:
        return TrendSummary(
            metric=metric,
            status="insufficient_data",
            data_points=0,
            direction="insufficient_data",
        )

    values = [r.value for r in series]
    current = values[-1]
    mean_val = statistics.fmean(values)

    t0 = series[0].recorded_at
    days = [(r.recorded_at - t0).total_seconds() / 86400 for r in series]

    if len(series) < 2 or days[-1] == days[0]:
        logger.debug("%s: insufficient data for a trend (%d readings)", metric, len(series))
        return TrendSummary(
            metric=metric,
            status="insufficient_data",
            data_points=len(values),
            direction="insufficient_data",
            current=round(current, 4),
            mean=round(mean_val, 4),
            anomalies=anomalies,
        )

    # Least-squares fit against elapsed days.
    slope_per_day = statistics.linear_regression(days, values).slope
    std_val = statistics.stdev(values)
    volatility = std_val / abs(mean_val) if mean_val != 0 else 0.0
    steps = [b - a for a, b in zip(values, values[1:])]
    persistence = abs(sum(s > 0 for s in steps) - sum(s < 0 for s in steps)) / len(steps)

    change = slope_per_day * (days[-1] - days[0])
    relative = change / abs(mean_val) if mean_val != 0 else change
    if relative > DIRECTION_THRESHOLD:
        direction = "increasing"
    elif relative < -DIRECTION_THRESHOLD:
        direction = "decreasing"
    else:
        direction = "stable"

    return TrendSummary(
        metric=metric,
        status="ok",
        data_points=len(values),
        direction=direction,
        current=round(current, 4),
        mean=round(mean_val, 4),
        slope_per_month=round(slope_per_day * DAYS_PER_MONTH, 4),
        std_dev=round(std_val, 4),
        volatility=round(volatility, 4),
        persistence=round(persistence, 4),
        anomalies=anomalies,
    )


def record_timestamp(index: int, record: Mapping[str, Any]) -> datetime:
    """Timestamp of a host vitals record; ``index`` only labels the error."""
    for key in _TIMESTAMP_KEYS:
        if record.get(key) is not None:
            return parse_timestamp(record[key])
    raise ValidationError(f"vitals[{index}] has no recorded_at timestamp")


def analyze_vital_trends(
    vitals: Sequence[Mapping[str, Any]] | None,
    *,
    limit: int = MAX_VITAL_READINGS,
) -> dict[str, TrendSummary]:
    """Split host vitals records into per-metric series and analyze each.

    Only the ``limit`` most recent records are considered. Metrics with no
    known reading at all are omitted.
    """
    if not vitals:
        return {}
    stamped: list[tuple[datetime, Mapping[str, Any]]] = []
    for index, record in enumerate(vitals):
        if not isinstance(record, Mapping):
            raise ValidationError(f"vitals[{index}] must be a mapping")
        stamped.append((record_timestamp(index, record), record))
    stamped.sort(key=lambda item: item[0], reverse=True)
    recent = stamped[:limit]

    trends: dict[str, TrendSummary] = {}
    for metric, keys in VITAL_METRICS.items():
        series = []
        for recorded_at, record in recent:
            raw = next((record[k] for k in keys if record.get(k) is not None), None)
            if raw is not None:
                series.append(TimedValue(recorded_at, _reading_value(metric, raw)))
        if series:
            trends[metric] = analyze_trend(series, metric)
    return trends
