from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from threading import RLock
from typing import TYPE_CHECKING, Optional

from .config import SolarTrackSettings
from .store import InMemoryReadingStore, ReadingStore, SqliteReadingStore
from .telegram import TelegramNotifier

if TYPE_CHECKING:
    from .scheduler import SolarTrackScheduler


def select_store(settings: SolarTrackSettings) -> ReadingStore:
    if settings.store_backend == "memory":
        return InMemoryReadingStore()
    return SqliteReadingStore(settings.database_path)


def select_notifier(settings: SolarTrackSettings) -> TelegramNotifier:
    return TelegramNotifier(
        bot_token=settings.telegram_bot_token,
        api_base=settings.telegram_api_base,
        timeout_seconds=settings.telegram_timeout_seconds,
    )


@dataclass
class AppState:
    settings: SolarTrackSettings
    store: Optional[ReadingStore] = None
    notifier: Optional[TelegramNotifier] = None
    scheduler: Optional[SolarTrackScheduler] = None

    lock: RLock = field(default_factory=RLock)

    def today(self) -> date:
        return datetime.now(self.settings.tzinfo()).date()


_global_state: Optional[AppState] = None


def get_state() -> AppState:
    global _global_state
    if _global_state is None:
        _global_state = AppState(settings=SolarTrackSettings())
    return _global_state


def _reset_state_for_testing() -> None:
    """Reset global state singleton. For test usage only."""
    global _global_state
    _global_state = None
