from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class BaselineReading(BaseModel):
    """Counter values recorded when monitoring began."""

    model_config = ConfigDict(frozen=True)

    solar_inverter_cumulative: float
    smart_meter_export_cumulative: float
    smart_meter_import_cumulative: float
    # Second solar meter; stored for reference, not used in any calculation
    solar_meter_cumulative: float | None = None


class Reading(BaselineReading):
    date: dt.date


class ReadingInput(BaseModel):
    """Body accepted by PUT /readings/{date} and PUT /baseline."""

    model_config = ConfigDict(allow_inf_nan=False)

    solar_inverter_cumulative: float
    smart_meter_export_cumulative: float
    smart_meter_import_cumulative: float
    solar_meter_cumulative: float | None = None

    def for_date(self, day: dt.date) -> Reading:
        return Reading(date=day, **self.model_dump())

    def as_baseline(self) -> BaselineReading:
        return BaselineReading(**self.model_dump())


class DailyDelta(BaseModel):
    model_config = ConfigDict(frozen=True)

    solar_generated: float = 0.0
    exported: float = 0.0
    imported: float = 0.0


class DerivedMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    net_usage: float
    self_consumed: float
    total_consumption: float


class SeriesPoint(BaseModel):
    """One chart point. Serialized with `import` as the key."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    date: dt.date
    solar: float
    import_: float = Field(alias="import")
    export: float
    used: float


class RangeTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_solar: float = 0.0
    total_import: float = 0.0
    total_export: float = 0.0
    net_usage: float = 0.0
    total_consumption: float = 0.0

    def rounded(self, ndigits: int = 2) -> RangeTotals:
        return RangeTotals(**{k: round(v, ndigits) for k, v in self.model_dump().items()})


class MonthlyStats(RangeTotals):
    pass


class RangeAggregate(BaseModel):
    model_config = ConfigDict(frozen=True)

    series: list[SeriesPoint] = Field(default_factory=list)
    totals: RangeTotals = Field(default_factory=RangeTotals)


class DailyReport(BaseModel):
    date: dt.date
    reading: Reading
    previous_date: dt.date | None = Field(
        default=None, description="Date of the reading used as reference; None for baseline/none"
    )
    used_baseline: bool = False
    delta: DailyDelta
    metrics: DerivedMetrics


class StatsResponse(BaseModel):
    start: dt.date
    end: dt.date
    totals: RangeTotals
    series: list[SeriesPoint]


class ConfigResponse(BaseModel):
    data: dict
