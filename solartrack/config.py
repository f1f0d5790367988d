from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

STORE_BACKENDS = ("sqlite", "memory")


class SolarTrackSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SOLARTRACK_",
        validate_assignment=True,
    )

    # Storage
    data_dir: str = Field(default="/data/solartrack")
    database_filename: str = Field(default="readings.db")
    store_backend: str = Field(default="sqlite")  # options: sqlite, memory

    # Calendar used to decide what "today" is for chat submissions
    timezone: str = Field(default="UTC")
    log_level: str = Field(default="INFO")

    # Telegram bot
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_api_base: str = Field(default="https://api.telegram.org")
    telegram_timeout_seconds: float = Field(default=10.0, gt=0)

    # Background jobs
    stats_refresh_interval_seconds: int = Field(default=900, ge=30)
    reminder_enabled: bool = Field(default=False)
    reminder_hour: int = Field(default=20, ge=0, le=23)

    @property
    def database_path(self) -> str:
        import os

        return os.path.join(self.data_dir, self.database_filename)

    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def to_public_dict(self) -> dict:
        data = self.model_dump()
        # remove secret material; expose presence boolean instead
        data["telegram_bot_token_present"] = bool(data.get("telegram_bot_token"))
        data.pop("telegram_bot_token", None)
        return data

    def persist_to_disk(self) -> None:
        import json
        import os

        os.makedirs(self.data_dir, exist_ok=True)
        path = os.path.join(self.data_dir, "settings.json")
        # Secrets are never written; the token must come from the environment.
        data = dict(self.to_public_dict())
        data.pop("telegram_bot_token_present", None)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)

    @staticmethod
    def load_from_disk(data_dir: str) -> dict | None:
        import json
        import os

        path = os.path.join(data_dir, "settings.json")
        if not os.path.exists(path):
            return None
        with open(path, encoding="utf-8") as f:
            raw = json.load(f)
        # Drop unknown/derived keys to keep forward/backward compatibility.
        valid_keys = set(SolarTrackSettings.model_fields.keys())
        return {k: v for k, v in raw.items() if k in valid_keys}

    @model_validator(mode="after")
    def _validate_invariants(self) -> SolarTrackSettings:
        if self.store_backend not in STORE_BACKENDS:
            raise ValueError(f"store_backend must be one of {', '.join(STORE_BACKENDS)}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {self.timezone}") from exc
        return self


class ConfigUpdate(BaseModel):
    data_dir: str | None = None
    database_filename: str | None = None
    store_backend: str | None = None
    timezone: str | None = None
    log_level: str | None = None

    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    telegram_api_base: str | None = None
    telegram_timeout_seconds: float | None = None

    stats_refresh_interval_seconds: int | None = None
    reminder_enabled: bool | None = None
    reminder_hour: int | None = None

    def apply_to(self, settings: SolarTrackSettings) -> SolarTrackSettings:
        """Return a new validated settings instance with the updates applied atomically."""
        updates = {k: v for k, v in self.model_dump().items() if v is not None}
        current = settings.model_dump()
        current.update(updates)
        return SolarTrackSettings.model_validate(current)
