"""Cumulative-to-delta metric derivation.

Meter readings are odometer-style counters. Everything shown to the user is a
difference between two readings, so this module turns ordered readings into
daily deltas and aggregate totals. All functions are pure: they take already
fetched readings and never touch the store.

Two aggregation conventions coexist and must stay separate:

* range totals (dashboard cards) take ONE end-to-end delta between the last
  reading in the range and the reference before it, clamped once;
* monthly totals sum per-day deltas, each clamped independently.

They agree for well-behaved counters and diverge when a counter goes backwards.
"""
from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date, timedelta

from .models import (
    BaselineReading,
    DailyDelta,
    DerivedMetrics,
    MonthlyStats,
    RangeAggregate,
    RangeTotals,
    Reading,
    SeriesPoint,
)

SOLAR = "solar_inverter_cumulative"
EXPORT = "smart_meter_export_cumulative"
IMPORT = "smart_meter_import_cumulative"


class InvalidReading(ValueError):
    """A reading field is missing or not a finite number."""


def _value(reading: BaselineReading | DailyDelta, field: str) -> float:
    raw = getattr(reading, field, None)
    if raw is None:
        raise InvalidReading(f"{field} is missing")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidReading(f"{field} is not numeric: {raw!r}") from exc
    if not math.isfinite(value):
        raise InvalidReading(f"{field} is not finite: {raw!r}")
    return value


def _clamped_delta(current: BaselineReading, previous: BaselineReading | None, field: str) -> float:
    if previous is None:
        _value(current, field)
        return 0.0
    return max(0.0, _value(current, field) - _value(previous, field))


def compute_daily_delta(current: Reading, previous: BaselineReading | None) -> DailyDelta:
    """Energy moved between `previous` and `current`.

    Any apparent decrease (meter reset, manual correction) is reported as zero.
    Without a previous reading or baseline the day is all zero.
    """
    return DailyDelta(
        solar_generated=_clamped_delta(current, previous, SOLAR),
        exported=_clamped_delta(current, previous, EXPORT),
        imported=_clamped_delta(current, previous, IMPORT),
    )


def compute_derived_metrics(delta: DailyDelta) -> DerivedMetrics:
    solar_generated = _value(delta, "solar_generated")
    exported = _value(delta, "exported")
    imported = _value(delta, "imported")
    self_consumed = max(0.0, solar_generated - exported)
    return DerivedMetrics(
        net_usage=imported - exported,
        self_consumed=self_consumed,
        total_consumption=imported + self_consumed,
    )


def compute_range_series(
    ordered_readings: Sequence[Reading],
    preceding_reading: BaselineReading | None,
) -> list[SeriesPoint]:
    """Per-day chart points for readings sorted by ascending date.

    Import/export are clamped deltas against the reading before each day; the
    first day is compared with `preceding_reading`, which may lie outside the
    requested range. Solar is the day's raw inverter value.
    """
    points: list[SeriesPoint] = []
    previous = preceding_reading
    for reading in ordered_readings:
        exported = _clamped_delta(reading, previous, EXPORT)
        imported = _clamped_delta(reading, previous, IMPORT)
        solar = _value(reading, SOLAR)
        self_consumed = max(0.0, solar - exported)
        points.append(
            SeriesPoint(
                date=reading.date,
                solar=solar,
                import_=imported,
                export=exported,
                used=imported + self_consumed,
            )
        )
        previous = reading
    return points


def _totals(total_solar: float, total_import: float, total_export: float) -> dict[str, float]:
    metrics = compute_derived_metrics(
        DailyDelta(solar_generated=total_solar, exported=total_export, imported=total_import)
    )
    return {
        "total_solar": total_solar,
        "total_import": total_import,
        "total_export": total_export,
        "net_usage": metrics.net_usage,
        "total_consumption": metrics.total_consumption,
    }


def compute_range_totals(
    last_reading: Reading | None,
    reference_reading: BaselineReading | None,
    range_readings: Sequence[Reading] = (),
) -> RangeTotals:
    """Totals for a date range using a single end-to-end delta.

    `last_reading` is the latest reading on or before the range end and
    `reference_reading` the latest reading before the range start (or the
    baseline). A missing reference counts as all-zero counters. Solar is the
    sum of the raw inverter values of `range_readings`.
    """
    if last_reading is None:
        return RangeTotals()
    total_solar = sum((_value(r, SOLAR) for r in range_readings), 0.0)
    if reference_reading is None:
        ref_export = ref_import = 0.0
    else:
        ref_export = _value(reference_reading, EXPORT)
        ref_import = _value(reference_reading, IMPORT)
    total_export = max(0.0, _value(last_reading, EXPORT) - ref_export)
    total_import = max(0.0, _value(last_reading, IMPORT) - ref_import)
    return RangeTotals(**_totals(total_solar, total_import, total_export))


def compute_monthly_totals(
    ordered_month_readings: Sequence[Reading],
    previous_month_last_or_baseline: BaselineReading | None,
) -> MonthlyStats:
    """Month totals as the sum of per-day clamped deltas."""
    total_solar = 0.0
    total_export = 0.0
    total_import = 0.0
    previous = previous_month_last_or_baseline
    for reading in ordered_month_readings:
        total_solar += _value(reading, SOLAR)
        total_export += _clamped_delta(reading, previous, EXPORT)
        total_import += _clamped_delta(reading, previous, IMPORT)
        previous = reading
    return MonthlyStats(**_totals(total_solar, total_import, total_export))


def _latest_before(readings: Sequence[Reading], day: date) -> Reading | None:
    found = None
    for reading in readings:
        if reading.date < day:
            found = reading
        else:
            break
    return found


def range_aggregate(
    readings: Sequence[Reading],
    baseline: BaselineReading | None,
    range_start: date,
    range_end: date,
) -> RangeAggregate:
    """Series and totals for [range_start, range_end] over a full ascending history."""
    in_range = [r for r in readings if range_start <= r.date <= range_end]
    reference = _latest_before(readings, range_start)
    if reference is None:
        reference = baseline
    last = _latest_before(readings, range_end + timedelta(days=1))
    return RangeAggregate(
        series=compute_range_series(in_range, reference),
        totals=compute_range_totals(last, reference, in_range),
    )


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    if month == 12:
        following = date(year + 1, 1, 1)
    else:
        following = date(year, month + 1, 1)
    return first, following - timedelta(days=1)


def monthly_aggregate(
    readings: Sequence[Reading],
    baseline: BaselineReading | None,
    year: int,
    month: int,
) -> MonthlyStats:
    first, last = month_bounds(year, month)
    month_readings = [r for r in readings if first <= r.date <= last]
    reference = _latest_before(readings, first)
    if reference is None:
        reference = baseline
    return compute_monthly_totals(month_readings, reference)
