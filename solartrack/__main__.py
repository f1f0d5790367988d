import logging
import os
import sys

import httpx
import uvicorn

from solartrack.api import create_app
from solartrack.config import SolarTrackSettings
from solartrack.state import select_notifier


def print_chat_ids() -> int:
    """List chats that messaged the bot; send it a message first."""
    notifier = select_notifier(SolarTrackSettings())
    try:
        chats = notifier.get_chat_ids()
    except ValueError as exc:
        print(f"{exc}; set SOLARTRACK_TELEGRAM_BOT_TOKEN", file=sys.stderr)
        return 1
    except httpx.HTTPError as exc:
        print(f"Telegram request failed: {exc}", file=sys.stderr)
        return 1
    if not chats:
        print("No messages found. Send a message to the bot first, then run this again.")
        return 0
    for chat in chats:
        name = " ".join(p for p in (chat["first_name"], chat["last_name"]) if p)
        print(f"ID = {chat['id']} ({name} @{chat['username'] or 'no-username'})")
    return 0


def main() -> None:
    if sys.argv[1:2] == ["chat-ids"]:
        raise SystemExit(print_chat_ids())
    settings = SolarTrackSettings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.environ.get("SOLARTRACK_PORT", "8000"))
    host = os.environ.get("SOLARTRACK_HOST", "0.0.0.0")
    app = create_app()
    uvicorn.run(app, host=host, port=port, lifespan="on")


if __name__ == "__main__":
    main()
