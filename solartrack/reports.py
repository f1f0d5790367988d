"""Fetch readings from a store and run them through the engine."""
from __future__ import annotations

from datetime import date

from .engine import (
    compute_daily_delta,
    compute_derived_metrics,
    compute_monthly_totals,
    compute_range_series,
    compute_range_totals,
    month_bounds,
)
from .models import BaselineReading, DailyReport, MonthlyStats, StatsResponse
from .store import ReadingStore


def reference_before(store: ReadingStore, day: date) -> BaselineReading | None:
    """Latest reading strictly before `day`, else the baseline, else None."""
    previous = store.get_latest_reading_before(day)
    if previous is not None:
        return previous
    return store.get_baseline()


def daily_report(store: ReadingStore, day: date) -> DailyReport | None:
    reading = store.get_reading(day)
    if reading is None:
        return None
    previous = store.get_latest_reading_before(day)
    used_baseline = False
    reference: BaselineReading | None = previous
    if previous is None:
        reference = store.get_baseline()
        used_baseline = reference is not None
    delta = compute_daily_delta(reading, reference)
    return DailyReport(
        date=day,
        reading=reading,
        previous_date=previous.date if previous is not None else None,
        used_baseline=used_baseline,
        delta=delta,
        metrics=compute_derived_metrics(delta),
    )


def range_stats(store: ReadingStore, start: date, end: date) -> StatsResponse:
    """Dashboard cards (single end-to-end delta) and chart series (per-day deltas)."""
    rows = store.get_readings_in_range(start, end)
    reference = reference_before(store, start)
    last = store.get_latest_reading_on_or_before(end)
    totals = compute_range_totals(last, reference, rows)
    return StatsResponse(
        start=start,
        end=end,
        totals=totals.rounded(2),
        series=compute_range_series(rows, reference),
    )


def monthly_stats(store: ReadingStore, year: int, month: int) -> MonthlyStats:
    first, last = month_bounds(year, month)
    rows = store.get_readings_in_range(first, last)
    return compute_monthly_totals(rows, reference_before(store, first))


def days_since_latest_reading(store: ReadingStore, today: date) -> int | None:
    latest = store.get_latest_reading_on_or_before(today)
    if latest is None:
        return None
    return (today - latest.date).days
