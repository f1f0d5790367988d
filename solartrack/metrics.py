from __future__ import annotations

from prometheus_client import Counter, Gauge, Summary

readings_upserted_total = Counter(
    "solartrack_readings_upserted_total",
    "Readings written to the store by source",
    labelnames=("source",),
)
webhook_updates_total = Counter(
    "solartrack_webhook_updates_total",
    "Telegram webhook updates by outcome",
    labelnames=("result",),
)

# Telegram client metrics
telegram_requests_total = Counter(
    "solartrack_telegram_requests_total",
    "Telegram Bot API request count by method and result",
    labelnames=("method", "result"),
)
telegram_request_seconds = Summary(
    "solartrack_telegram_request_seconds",
    "Duration of Telegram Bot API requests in seconds",
    labelnames=("method",),
)

# Derived energy gauges
latest_reading_age_days = Gauge(
    "solartrack_latest_reading_age_days", "Days since the most recent stored reading"
)
month_to_date_kwh = Gauge(
    "solartrack_month_to_date_kwh",
    "Month-to-date energy totals in kWh",
    labelnames=("metric",),
)

# Scheduler metrics
stats_refresh_runs_total = Counter(
    "solartrack_stats_refresh_runs_total", "Number of stats refresh job executions"
)
reminder_job_runs_total = Counter(
    "solartrack_reminder_job_runs_total", "Number of reminder job executions"
)
scheduler_misfires_total = Counter(
    "solartrack_scheduler_misfires_total", "Number of scheduler job misfires"
)
