from __future__ import annotations

import threading

from new_tube.core.models import (
    DeliveryError, InsufficientItemsError, NotifiableItem, PlaylistItem, Snapshot, Video,
)


def video(video_id: str, title: str | None = None, duration: float = 60.0) -> Video:
    return Video(id=video_id, title=title or f"title-{video_id}", uploader="Uploader", duration=duration)


def snapshot(latest_id: str, previous_id: str) -> Snapshot:
    return Snapshot(latest=video(latest_id), previous=video(previous_id))


def row(playlist_id: str, video_id: str, previous_video_id: str) -> PlaylistItem:
    return PlaylistItem(
        playlist_id=playlist_id,
        video_id=video_id,
        title=f"title-{video_id}",
        uploader="Uploader",
        duration=60.0,
        previous_video_id=previous_video_id,
    )


class FakeFetcher:
    """Returns configured snapshots, raises configured errors, records calls."""

    def __init__(self, results: dict[str, Snapshot | Exception | list[Video]] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def fetch(self, playlist_id: str) -> Snapshot:
        with self._lock:
            self.calls.append(playlist_id)
        result = self.results[playlist_id]
        if isinstance(result, Exception):
            raise result
        if isinstance(result, list):
            return Snapshot.from_videos(playlist_id, result)
        return result


class RecordingSink:
    def __init__(self, fail_ids: set[str] | None = None) -> None:
        self.delivered: list[NotifiableItem] = []
        self.fail_ids = fail_ids or set()
        self.event = threading.Event()

    def deliver(self, item: NotifiableItem) -> None:
        if item.video_id in self.fail_ids:
            raise DeliveryError(f"cannot deliver {item.video_id}")
        self.delivered.append(item)
        self.event.set()


def insufficient(playlist_id: str, count: int = 1) -> InsufficientItemsError:
    return InsufficientItemsError(playlist_id, count)
