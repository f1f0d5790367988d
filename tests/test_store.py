from datetime import date

import pytest

from solartrack.models import BaselineReading, Reading
from solartrack.store import InMemoryReadingStore, SqliteReadingStore, StoreError


def make_reading(day: str, solar: float, export: float, imported: float) -> Reading:
    return Reading(
        date=date.fromisoformat(day),
        solar_inverter_cumulative=solar,
        smart_meter_export_cumulative=export,
        smart_meter_import_cumulative=imported,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryReadingStore()
    return SqliteReadingStore(tmp_path / "db" / "readings.db")


def seed(store) -> None:
    # inserted out of order on purpose
    store.upsert_reading(make_reading("2024-05-03", 5, 14, 30))
    store.upsert_reading(make_reading("2024-05-01", 3, 15, 20))
    store.upsert_reading(make_reading("2024-04-28", 2, 10, 10))


def test_upsert_overwrites_reading_for_same_date(store):
    store.upsert_reading(make_reading("2024-05-01", 1, 2, 3))
    store.upsert_reading(make_reading("2024-05-01", 7, 8, 9))
    reading = store.get_reading(date(2024, 5, 1))
    assert reading is not None
    assert reading.smart_meter_import_cumulative == 9
    assert store.count_readings() == 1


def test_get_reading_missing_returns_none(store):
    assert store.get_reading(date(2024, 5, 1)) is None


def test_latest_before_and_on_or_before(store):
    seed(store)
    assert store.get_latest_reading_before(date(2024, 5, 3)).date == date(2024, 5, 1)
    assert store.get_latest_reading_on_or_before(date(2024, 5, 3)).date == date(2024, 5, 3)
    assert store.get_latest_reading_on_or_before(date(2024, 5, 2)).date == date(2024, 5, 1)
    assert store.get_latest_reading_before(date(2024, 4, 28)) is None


def test_readings_in_range_are_inclusive_and_ascending(store):
    seed(store)
    rows = store.get_readings_in_range(date(2024, 4, 28), date(2024, 5, 1))
    assert [r.date.isoformat() for r in rows] == ["2024-04-28", "2024-05-01"]


def test_list_readings_newest_first_and_filtered_only_with_both_bounds(store):
    seed(store)
    assert [r.date.day for r in store.list_readings()] == [3, 1, 28]
    assert [r.date.day for r in store.list_readings(date(2024, 5, 1), date(2024, 5, 31))] == [3, 1]
    assert len(store.list_readings(date(2024, 5, 1), None)) == 3


def test_baseline_set_and_replace(store):
    assert store.get_baseline() is None
    store.set_baseline(
        BaselineReading(
            solar_inverter_cumulative=1,
            smart_meter_export_cumulative=2,
            smart_meter_import_cumulative=3,
            solar_meter_cumulative=29650.2,
        )
    )
    store.set_baseline(
        BaselineReading(
            solar_inverter_cumulative=4,
            smart_meter_export_cumulative=5,
            smart_meter_import_cumulative=6,
        )
    )
    baseline = store.get_baseline()
    assert baseline.smart_meter_export_cumulative == 5
    assert baseline.solar_meter_cumulative is None


def test_sqlite_store_persists_between_instances(tmp_path):
    path = tmp_path / "readings.db"
    SqliteReadingStore(path).upsert_reading(make_reading("2024-05-01", 3, 15, 20))
    reopened = SqliteReadingStore(path)
    assert reopened.get_reading(date(2024, 5, 1)).solar_inverter_cumulative == 3


def test_sqlite_store_wraps_backend_errors(tmp_path):
    # a directory cannot be opened as a database file
    with pytest.raises(StoreError):
        SqliteReadingStore(tmp_path)
