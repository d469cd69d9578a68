from __future__ import annotations

import pytest

from fakes import row
from new_tube.bot import Bot
from new_tube.clients.telegram import TelegramAPIError, TelegramSink
from new_tube.core.models import DeliveryError
from new_tube.core.store import PlaylistStore
from new_tube.core.sync_engine import SyncEngine
from new_tube.core.worker import StopResult


class FakeTelegram:
    def __init__(self, batches: list | None = None):
        self.sent: list[tuple] = []
        self.offsets: list[int] = []
        self.batches = list(batches or [])
        self.fail_sends = False
        self.on_poll = None

    def send_message(self, chat_id, text):
        if self.fail_sends:
            raise DeliveryError("blocked")
        self.sent.append((chat_id, text))
        return len(self.sent)

    def get_updates(self, offset, timeout=0):
        self.offsets.append(offset)
        if self.on_poll:
            self.on_poll()
        batch = self.batches.pop(0) if self.batches else []
        if isinstance(batch, Exception):
            raise batch
        return batch


class FakeWorker:
    def __init__(self):
        self.sinks: list = []
        self.running = False
        self.stop_calls = 0

    @property
    def is_running(self):
        return self.running

    def start(self, sink):
        self.sinks.append(sink)
        self.running = True

    def stop(self):
        self.stop_calls += 1
        was_running, self.running = self.running, False
        return StopResult.STOPPED if was_running else StopResult.NOT_RUNNING


def _update(update_id: int, text: str, username: str = "owner", is_bot: bool = False, chat_id: int = 77) -> dict:
    return {
        "update_id": update_id,
        "message": {
            "text": text,
            "chat": {"id": chat_id},
            "from": {"username": username, "is_bot": is_bot},
        },
    }


@pytest.fixture
def telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture
def worker() -> FakeWorker:
    return FakeWorker()


@pytest.fixture
def bot(telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> Bot:
    return Bot(telegram, worker, engine, allowed_user="owner")


def test_start_command_starts_worker_for_chat(bot: Bot, telegram: FakeTelegram, worker: FakeWorker) -> None:
    bot.process_update(_update(1, "/start"))

    assert worker.running
    assert isinstance(worker.sinks[0], TelegramSink)
    assert worker.sinks[0].chat_id == 77
    assert telegram.sent == [(77, "Started fetching videos")]


def test_stop_command(bot: Bot, telegram: FakeTelegram, worker: FakeWorker) -> None:
    bot.process_update(_update(1, "/stop"))
    bot.process_update(_update(2, "/start"))
    bot.process_update(_update(3, "/stop"))

    assert telegram.sent == [
        (77, "Worker was not started"),
        (77, "Started fetching videos"),
        (77, "Stopped fetching videos"),
    ]


def test_commands_from_other_users_and_bots_are_ignored(bot: Bot, telegram: FakeTelegram, worker: FakeWorker) -> None:
    bot.process_update(_update(1, "/start", username="stranger"))
    bot.process_update(_update(2, "/start", is_bot=True))

    assert worker.sinks == []
    assert telegram.sent == []


def test_command_with_bot_suffix(bot: Bot, worker: FakeWorker) -> None:
    bot.process_update(_update(1, "/start@new_tube_bot"))

    assert worker.running


def test_status_and_last(bot: Bot, telegram: FakeTelegram, store: PlaylistStore) -> None:
    bot.process_update(_update(1, "/last"))
    store.upsert(row("P1", "V1", "V0"))
    bot.process_update(_update(2, "/status"))
    bot.process_update(_update(3, "/last"))

    assert telegram.sent[0] == (77, "No playlists tracked")
    assert telegram.sent[1] == (77, "Worker is stopped, tracking 1 playlists")
    assert telegram.sent[2] == (77, "Uploader\ntitle-V1\nhttps://www.youtube.com/watch?v=V1")


def test_read_updates_advances_offset(telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> None:
    telegram.batches = [[_update(10, "/status"), _update(11, "hello")], []]
    bot = Bot(telegram, worker, engine, allowed_user="owner")

    assert bot.read_updates() == 2
    assert bot.read_updates() == 0
    assert telegram.offsets == [1, 12]


def test_failed_reply_does_not_break_processing(bot: Bot, telegram: FakeTelegram, worker: FakeWorker) -> None:
    telegram.fail_sends = True

    bot.process_update(_update(1, "/start"))

    assert worker.running


def test_default_channel_is_started_and_verified(telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> None:
    bot = Bot(telegram, worker, engine, allowed_user="owner", default_chat_id="@news")

    bot.start_default_channel()

    assert worker.sinks[0].chat_id == "@news"
    assert telegram.sent == [("@news", "Started")]


def test_run_stops_worker_on_exit(telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> None:
    bot = Bot(telegram, worker, engine, allowed_user="owner")

    telegram.on_poll = bot.shutdown
    bot.run()

    assert worker.stop_calls == 1


def test_run_backs_off_on_api_error(monkeypatch, telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> None:
    bot = Bot(telegram, worker, engine, allowed_user="owner")
    waits = []

    def wait(timeout):
        waits.append(timeout)
        bot.shutdown()
        return True

    monkeypatch.setattr(bot._stop_event, "wait", wait)
    telegram.batches = [TelegramAPIError("Telegram getUpdates returned 502")]

    bot.run()

    assert waits == [5.0]
    assert worker.stop_calls == 1


def test_malformed_update_does_not_stop_batch(telegram: FakeTelegram, worker: FakeWorker, engine: SyncEngine) -> None:
    telegram.batches = [[{"update_id": "not-a-number", "message": {}}, _update(3, "/start")]]
    bot = Bot(telegram, worker, engine, allowed_user="owner")

    assert bot.read_updates() == 2
    assert worker.running
    bot.read_updates()
    assert telegram.offsets[-1] == 4


def test_store_failure_in_command_is_logged(telegram: FakeTelegram, worker: FakeWorker) -> None:
    store = PlaylistStore()
    engine = SyncEngine(store, None)
    store.close()
    telegram.batches = [[_update(1, "/last"), _update(2, "/start")]]
    bot = Bot(telegram, worker, engine, allowed_user="owner")

    assert bot.read_updates() == 2
    assert worker.running
