from __future__ import annotations

import pytest
import requests

from new_tube.clients.telegram import TelegramAPIError, TelegramClient, TelegramSink, render_message
from new_tube.core.models import DeliveryError, NotifiableItem


class FakeResponse:
    def __init__(self, status_code: int = 200, data: dict | None = None, text: str = ""):
        self.status_code = status_code
        self._data = data
        self.text = text

    def json(self):
        if self._data is None:
            raise ValueError("no json")
        return self._data


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts: list[tuple[str, dict, float]] = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


ITEM = NotifiableItem(
    playlist_id="PL1", video_id="abc123", title="A Title", uploader="A Channel", duration=3725.0,
)


def test_render_message() -> None:
    assert render_message(ITEM) == "A Channel\nA Title\n1:02:05\nhttps://www.youtube.com/watch?v=abc123"


def test_send_message_posts_to_bot_api() -> None:
    session = FakeSession(FakeResponse(data={"ok": True, "result": {"message_id": 42}}))
    client = TelegramClient("TOKEN", timeout=7, session=session)

    assert client.send_message(1001, "hello") == 42

    url, payload, timeout = session.posts[0]
    assert url == "https://api.telegram.org/botTOKEN/sendMessage"
    assert payload["chat_id"] == 1001
    assert payload["text"] == "hello"
    assert timeout == 7


def test_api_rejection_is_delivery_error() -> None:
    session = FakeSession(FakeResponse(400, {"ok": False, "description": "Bad Request: chat not found"}))

    with pytest.raises(DeliveryError, match="chat not found"):
        TelegramClient("TOKEN", session=session).send_message(1, "x")


def test_non_json_response_is_api_error() -> None:
    session = FakeSession(FakeResponse(502, None, text="Bad Gateway"))

    with pytest.raises(TelegramAPIError, match="502"):
        TelegramClient("TOKEN", session=session).send_message(1, "x")


def test_network_error_does_not_leak_token() -> None:
    session = FakeSession(requests.ConnectionError("https://api.telegram.org/botSECRET/sendMessage"))

    with pytest.raises(TelegramAPIError) as exc:
        TelegramClient("SECRET", session=session).send_message(1, "x")
    assert "SECRET" not in str(exc.value)


def test_get_updates_uses_offset_and_long_poll_timeout() -> None:
    updates = [{"update_id": 5, "message": {"text": "/start"}}]
    session = FakeSession(FakeResponse(data={"ok": True, "result": updates}))
    client = TelegramClient("TOKEN", timeout=30, session=session)

    assert client.get_updates(6, timeout=10) == updates

    url, payload, timeout = session.posts[0]
    assert url.endswith("/getUpdates")
    assert payload["offset"] == 6
    assert payload["timeout"] == 10
    assert timeout == 40


def test_sink_delivers_rendered_message() -> None:
    session = FakeSession(FakeResponse(data={"ok": True, "result": {"message_id": 1}}))
    sink = TelegramSink(TelegramClient("TOKEN", session=session), "@channel")

    sink.deliver(ITEM)

    _, payload, _ = session.posts[0]
    assert payload["chat_id"] == "@channel"
    assert payload["text"] == render_message(ITEM)
