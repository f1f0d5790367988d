from __future__ import annotations

from datetime import date
import logging
import re

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import ConfigUpdate, SolarTrackSettings
from .engine import InvalidReading
from .ingest import handle_update
from .metrics import (
    latest_reading_age_days,
    month_to_date_kwh,
    readings_upserted_total,
    reminder_job_runs_total,
    stats_refresh_runs_total,
)
from .models import ConfigResponse, ReadingInput
from .reports import daily_report, days_since_latest_reading, monthly_stats, range_stats
from .scheduler import SolarTrackScheduler
from .state import AppState, get_state, select_notifier, select_store
from .store import ReadingStore, StoreError
from .telegram import REMINDER_TEXT, TelegramNotifier

logger = logging.getLogger("solartrack")

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def _parse_day(value: str, name: str = "date") -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"invalid {name}: expected YYYY-MM-DD") from None


def _parse_month(value: str) -> tuple[int, int]:
    match = _MONTH_RE.match(value)
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise HTTPException(status_code=400, detail="invalid month: expected YYYY-MM")
    return int(match.group(1)), int(match.group(2))


def _store(state: AppState) -> ReadingStore:
    with state.lock:
        if state.store is None:
            state.store = select_store(state.settings)
        return state.store


def _notifier(state: AppState) -> TelegramNotifier:
    with state.lock:
        if state.notifier is None:
            state.notifier = select_notifier(state.settings)
        return state.notifier


def _refresh_stats(state: AppState) -> None:
    store = _store(state)
    today = state.today()
    age = days_since_latest_reading(store, today)
    latest_reading_age_days.set(age if age is not None else -1)
    stats = monthly_stats(store, today.year, today.month)
    for metric, value in stats.model_dump().items():
        month_to_date_kwh.labels(metric=metric).set(value)


def _send_reminder(state: AppState) -> None:
    with state.lock:
        chat_id = state.settings.telegram_chat_id
    if not chat_id:
        return
    today = state.today()
    if _store(state).get_reading(today) is not None:
        return
    logger.info("No reading for %s yet; sending reminder", today)
    _notifier(state).send_message(chat_id, REMINDER_TEXT)


def create_app(  # noqa: C901
    initial_settings: SolarTrackSettings | None = None,
    store: ReadingStore | None = None,
    notifier: TelegramNotifier | None = None,
) -> FastAPI:
    app = FastAPI(title="SolarTrack", default_response_class=JSONResponse)

    state = get_state()
    if initial_settings is not None:
        state.settings = initial_settings
    else:
        # Overlay persisted settings (sanitized) on environment defaults
        loaded = SolarTrackSettings.load_from_disk(state.settings.data_dir)
        if loaded:
            try:
                merged = {**state.settings.model_dump(), **loaded}
                state.settings = SolarTrackSettings.model_validate(merged)
            except ValueError as exc:
                logger.exception(
                    "Failed to load settings from disk at startup; using defaults. "
                    "error=%s loaded_keys=%s",
                    exc,
                    list(loaded.keys()),
                )
    if store is not None:
        state.store = store
    if notifier is not None:
        state.notifier = notifier
    if state.scheduler is None:
        state.scheduler = SolarTrackScheduler(state)

    def refresh_job() -> None:
        stats_refresh_runs_total.inc()
        try:
            _refresh_stats(state)
        except (StoreError, InvalidReading) as exc:
            logger.warning("Stats refresh failed: %s", exc)

    def reminder_job() -> None:
        reminder_job_runs_total.inc()
        try:
            _send_reminder(state)
        except StoreError as exc:
            logger.warning("Reminder check failed: %s", exc)

    @app.exception_handler(InvalidReading)
    def invalid_reading_handler(request: Request, exc: InvalidReading) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(StoreError)
    def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("Store error on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "storage unavailable"})

    @app.on_event("startup")
    def on_startup() -> None:
        scheduler: SolarTrackScheduler = state.scheduler  # type: ignore[assignment]
        scheduler.start(refresh_job=refresh_job, reminder_job=reminder_job)
        # prime gauges once quickly
        refresh_job()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        scheduler: SolarTrackScheduler = state.scheduler  # type: ignore[assignment]
        scheduler.shutdown()

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/api/telegram")
    def telegram_webhook(payload: dict) -> JSONResponse:
        with state.lock:
            allowed_chat_id = state.settings.telegram_chat_id
        result = handle_update(
            payload,
            store=_store(state),
            notifier=_notifier(state),
            allowed_chat_id=allowed_chat_id,
            today=state.today(),
        )
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.get("/readings")
    def list_readings(start: str | None = None, end: str | None = None) -> dict:
        """Stored readings, newest first. Filtered only when both bounds are given."""
        start_day = _parse_day(start, "start") if start else None
        end_day = _parse_day(end, "end") if end else None
        rows = _store(state).list_readings(start_day, end_day)
        return {"items": [r.model_dump(mode="json") for r in rows]}

    @app.get("/readings/{day}")
    def get_reading(day: str) -> dict:
        reading = _store(state).get_reading(_parse_day(day))
        if reading is None:
            raise HTTPException(status_code=404, detail="Reading not found")
        return reading.model_dump(mode="json")

    @app.put("/readings/{day}")
    def put_reading(day: str, body: ReadingInput) -> dict:
        reading = body.for_date(_parse_day(day))
        _store(state).upsert_reading(reading)
        readings_upserted_total.labels(source="api").inc()
        logger.info("Stored reading for %s via API", reading.date)
        return reading.model_dump(mode="json")

    @app.get("/readings/{day}/report")
    def get_daily_report(day: str) -> dict:
        report = daily_report(_store(state), _parse_day(day))
        if report is None:
            raise HTTPException(status_code=404, detail="Reading not found")
        return report.model_dump(mode="json")

    @app.get("/baseline")
    def get_baseline() -> dict:
        baseline = _store(state).get_baseline()
        if baseline is None:
            raise HTTPException(status_code=404, detail="Baseline not set")
        return baseline.model_dump(mode="json")

    @app.put("/baseline")
    def put_baseline(body: ReadingInput) -> dict:
        baseline = body.as_baseline()
        _store(state).set_baseline(baseline)
        return baseline.model_dump(mode="json")

    @app.get("/stats")
    def get_stats(start: str | None = None, end: str | None = None) -> dict:
        """Range totals for the dashboard cards plus the per-day chart series.

        Defaults to the first of the current month through today.
        """
        today = state.today()
        start_day = _parse_day(start, "start") if start else today.replace(day=1)
        end_day = _parse_day(end, "end") if end else today
        if start_day > end_day:
            raise HTTPException(status_code=400, detail="start must not be after end")
        stats = range_stats(_store(state), start_day, end_day)
        return stats.model_dump(mode="json", by_alias=True)

    @app.get("/stats/monthly")
    def get_monthly_stats(month: str | None = Query(default=None)) -> dict:
        if month is None:
            today = state.today()
            year, month_no = today.year, today.month
        else:
            year, month_no = _parse_month(month)
        stats = monthly_stats(_store(state), year, month_no)
        return {"month": f"{year:04d}-{month_no:02d}", **stats.model_dump()}

    @app.get("/config", response_model=ConfigResponse)
    def get_config() -> ConfigResponse:
        with state.lock:
            return ConfigResponse(data=state.settings.to_public_dict())

    @app.put("/config", response_model=ConfigResponse)
    def update_config(update: ConfigUpdate) -> ConfigResponse:
        try:
            with state.lock:
                previous = state.settings
                new_settings = update.apply_to(previous)
                # swap store only when the backing location changed
                if (
                    new_settings.store_backend != previous.store_backend
                    or new_settings.database_path != previous.database_path
                ):
                    state.store = select_store(new_settings)
                state.settings = new_settings
                state.notifier = select_notifier(new_settings)
                scheduler: SolarTrackScheduler = state.scheduler  # type: ignore[assignment]
                scheduler.reschedule(refresh_job=refresh_job, reminder_job=reminder_job)
                try:
                    new_settings.persist_to_disk()
                except OSError:
                    logger.warning("Failed to persist settings to disk")
                return ConfigResponse(data=new_settings.to_public_dict())
        except (ValueError, StoreError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app
