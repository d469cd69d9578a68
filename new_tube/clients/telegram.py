"""Telegram Bot API client and notification sink"""

import logging
from typing import Any

import requests

from new_tube.core.models import DeliveryError, NotifiableItem

logger = logging.getLogger(__name__)

API_URL = "https://api.telegram.org/bot{token}/{method}"


class TelegramAPIError(DeliveryError):
    """Telegram rejected a request or could not be reached."""
    pass


def render_message(item: NotifiableItem) -> str:
    return "\n".join([item.uploader, item.title, item.formatted_duration, item.link])


class TelegramClient:
    def __init__(self, token: str, timeout: float = 30, session: requests.Session | None = None):
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()

    def _call(self, method: str, payload: dict[str, Any], timeout: float | None = None) -> Any:
        url = API_URL.format(token=self._token, method=method)
        try:
            resp = self._session.post(url, json=payload, timeout=timeout or self._timeout)
        except requests.RequestException as e:
            # the token is part of the URL, keep it out of the message
            raise TelegramAPIError(f"Telegram {method} failed: {type(e).__name__}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code != 200 or not data.get("ok"):
            description = data.get("description") or resp.text[:200]
            raise TelegramAPIError(f"Telegram {method} returned {resp.status_code}: {description}")
        return data.get("result")

    def send_message(self, chat_id: int | str, text: str) -> int:
        """Send a text message. Returns the Telegram message id."""
        result = self._call("sendMessage", {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": False,
        })
        return int(result.get("message_id", 0)) if isinstance(result, dict) else 0

    def get_updates(self, offset: int, timeout: int = 0) -> list[dict]:
        """Long-poll for message updates starting at ``offset``."""
        result = self._call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]},
            timeout=self._timeout + timeout,
        )
        return list(result or [])


class TelegramSink:
    """Delivers new videos to one Telegram chat."""

    def __init__(self, client: TelegramClient, chat_id: int | str):
        self._client = client
        self.chat_id = chat_id

    def deliver(self, item: NotifiableItem) -> None:
        self._client.send_message(self.chat_id, render_message(item))
        logger.info(f"Sent {item.video_id} to chat {self.chat_id}")
