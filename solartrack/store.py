from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import closing
from datetime import date, datetime, timezone
from pathlib import Path
from threading import RLock
import logging
import sqlite3

from .models import BaselineReading, Reading

logger = logging.getLogger("solartrack")

_COLUMNS = (
    "solar_inverter_cumulative",
    "smart_meter_export_cumulative",
    "smart_meter_import_cumulative",
    "solar_meter_cumulative",
)


class StoreError(RuntimeError):
    """The backing store could not complete a read or write."""


class ReadingStore(ABC):
    @abstractmethod
    def get_reading(self, day: date) -> Reading | None:
        """Return the reading stored for `day`."""

    @abstractmethod
    def get_latest_reading_before(self, day: date) -> Reading | None:
        """Return the most recent reading dated strictly before `day`."""

    @abstractmethod
    def get_latest_reading_on_or_before(self, day: date) -> Reading | None:
        """Return the most recent reading dated on or before `day`."""

    @abstractmethod
    def get_readings_in_range(self, start: date, end: date) -> list[Reading]:
        """Return readings with start <= date <= end, ascending by date."""

    @abstractmethod
    def get_baseline(self) -> BaselineReading | None: ...

    @abstractmethod
    def set_baseline(self, baseline: BaselineReading) -> None: ...

    @abstractmethod
    def upsert_reading(self, reading: Reading) -> None:
        """Insert the reading, replacing any existing reading for the same date."""

    @abstractmethod
    def list_readings(self, start: date | None = None, end: date | None = None) -> list[Reading]:
        """Return readings newest first, filtered only when both bounds are given."""

    def count_readings(self) -> int:
        return len(self.list_readings())


class InMemoryReadingStore(ReadingStore):
    def __init__(self) -> None:
        self._readings: dict[date, Reading] = {}
        self._baseline: BaselineReading | None = None
        self._lock = RLock()

    def _ordered(self) -> list[Reading]:
        with self._lock:
            return [self._readings[d] for d in sorted(self._readings)]

    def get_reading(self, day: date) -> Reading | None:
        with self._lock:
            return self._readings.get(day)

    def get_latest_reading_before(self, day: date) -> Reading | None:
        earlier = [r for r in self._ordered() if r.date < day]
        return earlier[-1] if earlier else None

    def get_latest_reading_on_or_before(self, day: date) -> Reading | None:
        earlier = [r for r in self._ordered() if r.date <= day]
        return earlier[-1] if earlier else None

    def get_readings_in_range(self, start: date, end: date) -> list[Reading]:
        return [r for r in self._ordered() if start <= r.date <= end]

    def get_baseline(self) -> BaselineReading | None:
        with self._lock:
            return self._baseline

    def set_baseline(self, baseline: BaselineReading) -> None:
        with self._lock:
            self._baseline = BaselineReading(**baseline.model_dump(include=set(_COLUMNS)))

    def upsert_reading(self, reading: Reading) -> None:
        with self._lock:
            self._readings[reading.date] = reading

    def list_readings(self, start: date | None = None, end: date | None = None) -> list[Reading]:
        rows = self._ordered()
        if start is not None and end is not None:
            rows = [r for r in rows if start <= r.date <= end]
        rows.reverse()
        return rows

    def count_readings(self) -> int:
        with self._lock:
            return len(self._readings)


class SqliteReadingStore(ReadingStore):
    """Readings persisted in a local SQLite file.

    A connection is opened per call so the store can be shared between the
    request worker threads and the scheduler thread.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS daily_readings ("
                    "date TEXT PRIMARY KEY, "
                    "solar_inverter_cumulative REAL NOT NULL, "
                    "smart_meter_export_cumulative REAL NOT NULL, "
                    "smart_meter_import_cumulative REAL NOT NULL, "
                    "solar_meter_cumulative REAL, "
                    "created_at TEXT NOT NULL, "
                    "updated_at TEXT NOT NULL)"
                )
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS base_readings ("
                    "id INTEGER PRIMARY KEY CHECK (id = 1), "
                    "solar_inverter_cumulative REAL NOT NULL, "
                    "smart_meter_export_cumulative REAL NOT NULL, "
                    "smart_meter_import_cumulative REAL NOT NULL, "
                    "solar_meter_cumulative REAL, "
                    "created_at TEXT NOT NULL, "
                    "updated_at TEXT NOT NULL)"
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"failed to initialise {self.path}: {exc}") from exc

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                return list(conn.execute(sql, params))
        except sqlite3.Error as exc:
            raise StoreError(f"query failed: {exc}") from exc

    @staticmethod
    def _to_reading(row: sqlite3.Row) -> Reading:
        return Reading(date=date.fromisoformat(row["date"]), **{c: row[c] for c in _COLUMNS})

    def _select_readings(self, where: str, params: tuple, order: str, limit: int | None = None):
        sql = "SELECT date, " + ", ".join(_COLUMNS) + " FROM daily_readings"
        if where:
            sql += " WHERE " + where
        sql += " ORDER BY date " + order
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [self._to_reading(r) for r in self._query(sql, params)]

    def get_reading(self, day: date) -> Reading | None:
        rows = self._select_readings("date = ?", (day.isoformat(),), "ASC", limit=1)
        return rows[0] if rows else None

    def get_latest_reading_before(self, day: date) -> Reading | None:
        rows = self._select_readings("date < ?", (day.isoformat(),), "DESC", limit=1)
        return rows[0] if rows else None

    def get_latest_reading_on_or_before(self, day: date) -> Reading | None:
        rows = self._select_readings("date <= ?", (day.isoformat(),), "DESC", limit=1)
        return rows[0] if rows else None

    def get_readings_in_range(self, start: date, end: date) -> list[Reading]:
        return self._select_readings(
            "date >= ? AND date <= ?", (start.isoformat(), end.isoformat()), "ASC"
        )

    def get_baseline(self) -> BaselineReading | None:
        rows = self._query("SELECT " + ", ".join(_COLUMNS) + " FROM base_readings WHERE id = 1")
        if not rows:
            return None
        return BaselineReading(**{c: rows[0][c] for c in _COLUMNS})

    def set_baseline(self, baseline: BaselineReading) -> None:
        now = datetime.now(timezone.utc).isoformat()
        values = tuple(getattr(baseline, c) for c in _COLUMNS)
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "INSERT INTO base_readings(id, " + ", ".join(_COLUMNS) + ", created_at, updated_at) "
                    "VALUES (1, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET "
                    + ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS)
                    + ", updated_at = excluded.updated_at",
                    values + (now, now),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"baseline write failed: {exc}") from exc

    def upsert_reading(self, reading: Reading) -> None:
        now = datetime.now(timezone.utc).isoformat()
        values = tuple(getattr(reading, c) for c in _COLUMNS)
        try:
            with closing(self._connect()) as conn:
                conn.execute(
                    "INSERT INTO daily_readings(date, " + ", ".join(_COLUMNS) + ", created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(date) DO UPDATE SET "
                    + ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS)
                    + ", updated_at = excluded.updated_at",
                    (reading.date.isoformat(),) + values + (now, now),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"reading write failed for {reading.date}: {exc}") from exc
        logger.debug("Stored reading for %s in %s", reading.date, self.path)

    def list_readings(self, start: date | None = None, end: date | None = None) -> list[Reading]:
        if start is not None and end is not None:
            return self._select_readings(
                "date >= ? AND date <= ?", (start.isoformat(), end.isoformat()), "DESC"
            )
        return self._select_readings("", (), "DESC")

    def count_readings(self) -> int:
        rows = self._query("SELECT COUNT(*) AS n FROM daily_readings")
        return int(rows[0]["n"])
