import json

import pytest

from solartrack.config import ConfigUpdate, SolarTrackSettings


def test_store_backend_must_be_known():
    with pytest.raises(ValueError):
        SolarTrackSettings(store_backend="postgres")
    assert SolarTrackSettings(store_backend="memory").store_backend == "memory"


def test_timezone_must_exist():
    with pytest.raises(ValueError):
        SolarTrackSettings(timezone="Mars/Olympus")
    s = SolarTrackSettings(timezone="Europe/Amsterdam")
    assert s.tzinfo().key == "Europe/Amsterdam"


def test_reminder_hour_and_refresh_interval_bounds():
    with pytest.raises(ValueError):
        SolarTrackSettings(reminder_hour=24)
    with pytest.raises(ValueError):
        SolarTrackSettings(stats_refresh_interval_seconds=5)


def test_config_update_applies_atomically_and_validates():
    settings = SolarTrackSettings(store_backend="memory", reminder_hour=20)
    new_settings = ConfigUpdate(reminder_hour=6).apply_to(settings)
    assert new_settings.reminder_hour == 6
    assert settings.reminder_hour == 20
    with pytest.raises(ValueError):
        ConfigUpdate(store_backend="postgres").apply_to(settings)


def test_public_dict_hides_bot_token():
    data = SolarTrackSettings(telegram_bot_token="123:abc").to_public_dict()
    assert "telegram_bot_token" not in data
    assert data["telegram_bot_token_present"] is True
    assert SolarTrackSettings(telegram_bot_token=None).to_public_dict()["telegram_bot_token_present"] is False


def test_persisted_settings_skip_secrets_and_unknown_keys(tmp_path):
    settings = SolarTrackSettings(data_dir=str(tmp_path), telegram_bot_token="123:abc", reminder_hour=7)
    settings.persist_to_disk()
    raw = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert "telegram_bot_token" not in raw
    assert raw["reminder_hour"] == 7

    raw["legacy_option"] = True
    (tmp_path / "settings.json").write_text(json.dumps(raw), encoding="utf-8")
    loaded = SolarTrackSettings.load_from_disk(str(tmp_path))
    assert loaded["reminder_hour"] == 7
    assert "legacy_option" not in loaded


def test_load_from_disk_without_file_returns_none(tmp_path):
    assert SolarTrackSettings.load_from_disk(str(tmp_path)) is None
