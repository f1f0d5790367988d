from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging

from pydantic import BaseModel, ValidationError

from .engine import compute_daily_delta, compute_derived_metrics
from .metrics import readings_upserted_total, webhook_updates_total
from .reports import reference_before
from .store import ReadingStore, StoreError
from .telegram import (
    SAVE_FAILED_TEXT,
    SAVED_WITHOUT_SUMMARY_TEXT,
    MessageParseError,
    TelegramNotifier,
    format_confirmation,
    parse_reading_message,
)

logger = logging.getLogger("solartrack")


class TelegramChat(BaseModel):
    id: int


class TelegramMessage(BaseModel):
    chat: TelegramChat
    text: str | None = None


class TelegramUpdate(BaseModel):
    message: TelegramMessage | None = None


@dataclass
class WebhookResult:
    status_code: int = 200
    body: dict = field(default_factory=lambda: {"ok": True})


def handle_update(
    payload: dict,
    store: ReadingStore,
    notifier: TelegramNotifier,
    allowed_chat_id: str | None,
    today: date,
) -> WebhookResult:
    """Process one Telegram update carrying a reading message.

    Replies to the sender are best effort; the returned result is what the
    webhook answers to Telegram.
    """
    if not allowed_chat_id:
        logger.error("Telegram chat id not configured")
        webhook_updates_total.labels(result="config_error").inc()
        return WebhookResult(500, {"error": "Server configuration error"})

    try:
        update = TelegramUpdate.model_validate(payload)
    except ValidationError:
        update = TelegramUpdate()
    message = update.message
    chat_id = message.chat.id if message is not None else None
    if chat_id is None or str(chat_id) != str(allowed_chat_id):
        logger.warning("Unauthorized chat ID: %s", chat_id)
        webhook_updates_total.labels(result="unauthorized").inc()
        return WebhookResult(403, {"error": "Unauthorized"})

    if not message.text:
        webhook_updates_total.labels(result="ignored").inc()
        return WebhookResult()

    try:
        reading = parse_reading_message(message.text, today)
    except MessageParseError as exc:
        webhook_updates_total.labels(result="rejected").inc()
        notifier.send_message(chat_id, exc.reply)
        return WebhookResult()

    try:
        overwritten = store.get_reading(reading.date) is not None
        store.upsert_reading(reading)
    except StoreError as exc:
        logger.error("Failed to store reading for %s: %s", reading.date, exc)
        webhook_updates_total.labels(result="store_error").inc()
        notifier.send_message(chat_id, SAVE_FAILED_TEXT)
        return WebhookResult(500, {"error": "Database error"})
    readings_upserted_total.labels(source="telegram").inc()
    logger.info("Stored reading for %s from chat %s", reading.date, chat_id)

    # The reading is saved at this point; a failed lookup only loses the summary.
    try:
        reference = reference_before(store, reading.date)
    except StoreError as exc:
        logger.error("Stored reading for %s but could not load its reference: %s", reading.date, exc)
        webhook_updates_total.labels(result="stored_without_summary").inc()
        notifier.send_message(chat_id, SAVED_WITHOUT_SUMMARY_TEXT)
        return WebhookResult()

    delta = compute_daily_delta(reading, reference)
    text = format_confirmation(
        reading.date, today, delta, compute_derived_metrics(delta), overwritten=overwritten
    )
    notifier.send_message(chat_id, text)
    webhook_updates_total.labels(result="stored").inc()
    return WebhookResult()
