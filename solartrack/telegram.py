from __future__ import annotations

from dataclasses import dataclass
from datetime import date
import logging
import math
import re

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .metrics import telegram_request_seconds, telegram_requests_total
from .models import DailyDelta, DerivedMetrics, Reading

logger = logging.getLogger("solartrack")

EXAMPLE_VALUES = "18.5 29650.2 6.2 4060.5"

HELP_TEXT = (
    "❌ Invalid format.\n\n"
    "Format 1 (today): solar_inverter solar_meter smart_export smart_import\n"
    f"Example: {EXAMPLE_VALUES}\n\n"
    "Format 2 (with date): YYYY-MM-DD solar_inverter solar_meter smart_export smart_import\n"
    f"Example: 2024-01-15 {EXAMPLE_VALUES}"
)
INVALID_DATE_FORMAT_TEXT = (
    f"❌ Invalid date format. Use YYYY-MM-DD\n\nExample: 2024-01-15 {EXAMPLE_VALUES}"
)
INVALID_DATE_TEXT = "❌ Invalid date. Please use a valid date in YYYY-MM-DD format."
INVALID_NUMBERS_TEXT = "❌ Invalid numbers. Please send valid numeric values."
SAVE_FAILED_TEXT = "❌ Error saving data. Please try again later."
SAVED_WITHOUT_SUMMARY_TEXT = (
    "Saved ✅\n\n⚠️ Could not load the previous reading, so no daily totals were calculated."
)
REMINDER_TEXT = (
    "⏰ No reading recorded for today yet.\n\n"
    f"Send: solar_inverter solar_meter smart_export smart_import\nExample: {EXAMPLE_VALUES}"
)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class MessageParseError(ValueError):
    """The chat message is not a reading; `reply` is the text to send back."""

    def __init__(self, reply: str):
        super().__init__(reply)
        self.reply = reply


def _parse_number(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise MessageParseError(INVALID_NUMBERS_TEXT) from None
    if not math.isfinite(value):
        raise MessageParseError(INVALID_NUMBERS_TEXT)
    return value


def parse_reading_message(text: str, today: date) -> Reading:
    """Parse `[YYYY-MM-DD] solar_inverter solar_meter smart_export smart_import`.

    Without a date the reading is recorded for `today`.
    """
    parts = text.split()
    if len(parts) == 4:
        day = today
        values = parts
    elif len(parts) == 5:
        if not _DATE_RE.match(parts[0]):
            raise MessageParseError(INVALID_DATE_FORMAT_TEXT)
        try:
            day = date.fromisoformat(parts[0])
        except ValueError:
            raise MessageParseError(INVALID_DATE_TEXT) from None
        values = parts[1:]
    else:
        raise MessageParseError(HELP_TEXT)
    solar_inverter, solar_meter, export, imported = (_parse_number(v) for v in values)
    return Reading(
        date=day,
        solar_inverter_cumulative=solar_inverter,
        solar_meter_cumulative=solar_meter,
        smart_meter_export_cumulative=export,
        smart_meter_import_cumulative=imported,
    )


def format_confirmation(
    day: date,
    today: date,
    delta: DailyDelta,
    metrics: DerivedMetrics,
    overwritten: bool = False,
) -> str:
    heading = "Today's" if day == today else f"Date: {day.isoformat()}"
    lines = [
        "Saved ✅",
        "",
        f"📅 {heading} Readings:",
        f"Solar Generated: {delta.solar_generated:.2f} kWh",
        f"Exported: {delta.exported:.2f} kWh",
        f"Imported: {delta.imported:.2f} kWh",
        "",
        "💡 Calculations:",
        f"Net Usage: {metrics.net_usage:.2f} kWh",
        f"Total Consumption: {metrics.total_consumption:.2f} kWh",
    ]
    if overwritten:
        lines += ["", "⚠️ Note: Data overwritten for this date"]
    return "\n".join(lines)


@dataclass
class TelegramNotifier:
    """Minimal Telegram Bot API client for replies and reminders."""

    bot_token: str | None
    api_base: str = "https://api.telegram.org"
    timeout_seconds: float = 10.0

    def _url(self, method: str) -> str:
        return f"{self.api_base.rstrip('/')}/bot{self.bot_token}/{method}"

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.HTTPError),
    )
    def _call(self, method: str, payload: dict | None = None) -> dict:
        with telegram_request_seconds.labels(method=method).time():
            try:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    if payload is None:
                        resp = client.get(self._url(method))
                    else:
                        resp = client.post(self._url(method), json=payload)
                    resp.raise_for_status()
                    data = resp.json()
                telegram_requests_total.labels(method=method, result="success").inc()
            except httpx.HTTPError:
                telegram_requests_total.labels(method=method, result="error").inc()
                raise
        return data

    def send_message(self, chat_id: int | str, text: str) -> bool:
        if not self.bot_token:
            logger.error("Telegram bot token not configured; dropping message to chat %s", chat_id)
            return False
        try:
            self._call("sendMessage", {"chat_id": chat_id, "text": text})
        except httpx.HTTPError as exc:
            logger.warning("Error sending Telegram message to chat %s: %s", chat_id, exc)
            return False
        return True

    def get_chat_ids(self) -> list[dict]:
        """Return the chats that have recently messaged the bot.

        Used once during setup to find the value for the allowed chat id.
        """
        if not self.bot_token:
            raise ValueError("Telegram bot token not configured")
        data = self._call("getUpdates")
        chats: dict[int, dict] = {}
        for update in data.get("result", []) or []:
            chat = (update.get("message") or {}).get("chat")
            if not chat or chat.get("id") is None:
                continue
            chats[chat["id"]] = {
                "id": chat["id"],
                "first_name": chat.get("first_name"),
                "last_name": chat.get("last_name"),
                "username": chat.get("username"),
            }
        return list(chats.values())
