"""
Telegram command bot

Reads bot updates and drives the polling worker:
- /start   start (or restart) announcing new videos in the sender's chat
- /stop    stop announcing
- /status  report whether the worker runs and how many playlists are tracked
- /last    list the stored latest video of each playlist

Only the configured human user may issue commands. An update counts as
processed once a later offset is requested, so the last seen update id is
remembered and the next request asks for ``last_update_id + 1``.
"""

import logging
import threading

from new_tube.clients.telegram import TelegramAPIError, TelegramClient, TelegramSink
from new_tube.core.models import DeliveryError, NewTubeError
from new_tube.core.sync_engine import SyncEngine
from new_tube.core.worker import PollingWorker, StopResult

logger = logging.getLogger(__name__)

ERROR_BACKOFF = 5.0


class Bot:
    def __init__(self, telegram: TelegramClient, worker: PollingWorker, engine: SyncEngine,
                 allowed_user: str, default_chat_id: int | str | None = None,
                 long_poll_timeout: int = 10):
        self._telegram = telegram
        self._worker = worker
        self._engine = engine
        self._allowed_user = allowed_user
        self._default_chat_id = default_chat_id
        self._long_poll_timeout = long_poll_timeout
        self._last_update_id = 0
        self._stop_event = threading.Event()

    def _sender_is_valid(self, message: dict) -> bool:
        """The sender must be the allowed bot user and a human."""
        sender = message.get("from") or {}
        return sender.get("username") == self._allowed_user and not sender.get("is_bot", False)

    def _reply(self, chat_id: int | str, text: str) -> None:
        try:
            self._telegram.send_message(chat_id, text)
        except DeliveryError as e:
            logger.error(f"Failed to reply to chat {chat_id}: {e}")

    def _last_text(self) -> str:
        items = self._engine.last_items()
        if not items:
            return "No playlists tracked"
        return "\n\n".join(
            f"{item.uploader}\n{item.title}\n{item.link}" for item in items
        )

    def process_update(self, update: dict) -> None:
        self._last_update_id = max(self._last_update_id, int(update.get("update_id", 0)))

        message = update.get("message")
        if not message or not self._sender_is_valid(message):
            return

        text = (message.get("text") or "").strip()
        command = text.split()[0].split("@")[0] if text else ""
        chat_id = message.get("chat", {}).get("id")

        if command == "/start":
            logger.info(f"Started fetching videos for chat {chat_id}")
            self._worker.start(TelegramSink(self._telegram, chat_id))
            self._reply(chat_id, "Started fetching videos")
        elif command == "/stop":
            if self._worker.stop() is StopResult.STOPPED:
                self._reply(chat_id, "Stopped fetching videos")
            else:
                self._reply(chat_id, "Worker was not started")
        elif command == "/status":
            state = "running" if self._worker.is_running else "stopped"
            self._reply(chat_id, f"Worker is {state}, tracking {len(self._engine.playlist_ids())} playlists")
        elif command == "/last":
            self._reply(chat_id, self._last_text())
        else:
            logger.debug(f"Ignoring message: {text}")

    def read_updates(self) -> int:
        """Fetch and process one batch of updates. Returns how many were read."""
        updates = self._telegram.get_updates(self._last_update_id + 1, self._long_poll_timeout)
        for update in updates:
            try:
                self.process_update(update)
            except NewTubeError as e:
                logger.error(f"Failed to process update {update.get('update_id')}: {e}")
            except Exception:
                logger.exception(f"Unexpected error processing update {update.get('update_id')}")
        return len(updates)

    def start_default_channel(self) -> None:
        """Start the worker for the configured channel and send a verification message."""
        if self._default_chat_id is None:
            return
        self._worker.start(TelegramSink(self._telegram, self._default_chat_id))
        # verifies the channel id
        self._telegram.send_message(self._default_chat_id, "Started")

    def shutdown(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        try:
            self.start_default_channel()
            logger.info("Bot started")
            while not self._stop_event.is_set():
                try:
                    self.read_updates()
                except TelegramAPIError as e:
                    logger.error(f"Error while fetching telegram updates: {e}")
                    self._stop_event.wait(ERROR_BACKOFF)
        finally:
            self._worker.stop()
            logger.info("Bot stopped")
