from datetime import date

import httpx
import pytest

from solartrack.models import DailyDelta, DerivedMetrics
from solartrack.telegram import (
    HELP_TEXT,
    INVALID_DATE_FORMAT_TEXT,
    INVALID_DATE_TEXT,
    INVALID_NUMBERS_TEXT,
    MessageParseError,
    TelegramNotifier,
    format_confirmation,
    parse_reading_message,
)

TODAY = date(2024, 5, 2)


def test_parse_four_values_uses_today():
    reading = parse_reading_message("18.5 29650.2 6.2 4060.5", TODAY)
    assert reading.date == TODAY
    assert reading.solar_inverter_cumulative == 18.5
    assert reading.solar_meter_cumulative == 29650.2
    assert reading.smart_meter_export_cumulative == 6.2
    assert reading.smart_meter_import_cumulative == 4060.5


def test_parse_with_explicit_date_and_extra_whitespace():
    reading = parse_reading_message("  2024-01-15   18.5 29650.2\t6.2 4060.5\n", TODAY)
    assert reading.date == date(2024, 1, 15)
    assert reading.smart_meter_import_cumulative == 4060.5


@pytest.mark.parametrize(
    "text,reply",
    [
        ("18.5 6.2 4060.5", HELP_TEXT),
        ("hello", HELP_TEXT),
        ("2024-01-15 18.5 29650.2 6.2 4060.5 1", HELP_TEXT),
        ("15-01-2024 18.5 29650.2 6.2 4060.5", INVALID_DATE_FORMAT_TEXT),
        ("2024-02-30 18.5 29650.2 6.2 4060.5", INVALID_DATE_TEXT),
        ("18.5 abc 6.2 4060.5", INVALID_NUMBERS_TEXT),
        ("18.5 nan 6.2 4060.5", INVALID_NUMBERS_TEXT),
        ("2024-01-15 18.5 29650.2 inf 4060.5", INVALID_NUMBERS_TEXT),
    ],
)
def test_parse_rejections_carry_reply_text(text, reply):
    with pytest.raises(MessageParseError) as excinfo:
        parse_reading_message(text, TODAY)
    assert excinfo.value.reply == reply


def test_confirmation_for_today_and_past_dates():
    delta = DailyDelta(solar_generated=10, exported=2.5, imported=10)
    metrics = DerivedMetrics(net_usage=7.5, self_consumed=7.5, total_consumption=17.5)
    text = format_confirmation(TODAY, TODAY, delta, metrics)
    assert text.startswith("Saved ✅")
    assert "Today's Readings:" in text
    assert "Solar Generated: 10.00 kWh" in text
    assert "Exported: 2.50 kWh" in text
    assert "Net Usage: 7.50 kWh" in text
    assert "Total Consumption: 17.50 kWh" in text
    assert "overwritten" not in text

    past = format_confirmation(date(2024, 4, 1), TODAY, delta, metrics, overwritten=True)
    assert "Date: 2024-04-01 Readings:" in past
    assert past.endswith("⚠️ Note: Data overwritten for this date")


class DummyResp:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


def make_client(calls: dict, payload=None, fail: bool = False):
    class DummyClient:
        def __init__(self, *args, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def post(self, url, json=None):  # noqa: A002
            calls.setdefault("post", []).append((url, json))
            if fail:
                raise httpx.ConnectError("connection refused")
            return DummyResp({"ok": True})

        def get(self, url):
            calls.setdefault("get", []).append(url)
            return DummyResp(payload)

    return DummyClient


def test_send_message_posts_to_bot_api(monkeypatch):
    calls: dict = {}
    monkeypatch.setattr(httpx, "Client", make_client(calls))
    notifier = TelegramNotifier(bot_token="123:abc", api_base="https://tg.example/")
    assert notifier.send_message(42, "hi") is True
    url, body = calls["post"][0]
    assert url == "https://tg.example/bot123:abc/sendMessage"
    assert body == {"chat_id": 42, "text": "hi"}


def test_send_message_without_token_is_a_noop(monkeypatch):
    calls: dict = {}
    monkeypatch.setattr(httpx, "Client", make_client(calls))
    assert TelegramNotifier(bot_token=None).send_message(42, "hi") is False
    assert calls == {}


def test_send_message_retries_then_gives_up(monkeypatch):
    calls: dict = {}
    monkeypatch.setattr(httpx, "Client", make_client(calls, fail=True))
    notifier = TelegramNotifier(bot_token="t")
    assert notifier.send_message(42, "hi") is False
    assert len(calls["post"]) == 3


def test_get_chat_ids_deduplicates_chats(monkeypatch):
    payload = {
        "ok": True,
        "result": [
            {"message": {"chat": {"id": 7, "first_name": "Sam", "username": "sam"}}},
            {"message": {"chat": {"id": 7, "first_name": "Sam", "username": "sam"}}},
            {"edited_message": {"chat": {"id": 8}}},
            {"message": {"chat": {"id": -100, "title": "group"}}},
        ],
    }
    calls: dict = {}
    monkeypatch.setattr(httpx, "Client", make_client(calls, payload=payload))
    chats = TelegramNotifier(bot_token="t").get_chat_ids()
    assert [c["id"] for c in chats] == [7, -100]
    assert chats[0]["username"] == "sam"
    assert calls["get"] == ["https://api.telegram.org/bott/getUpdates"]


def test_get_chat_ids_requires_token():
    with pytest.raises(ValueError):
        TelegramNotifier(bot_token=None).get_chat_ids()
