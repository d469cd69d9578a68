"""
Novelty Classifier

Decides what a fresh playlist snapshot means relative to the persisted row.

Rules, first match wins:
1. fresh latest == stored latest           -> SAME_AS_BEFORE
2. fresh latest == stored previous         -> OLD_VIDEO_NOW_LATEST
   The stored latest vanished from the playlist (deleted, privated, unlisted)
   and the video before it moved up. Persist, but do not announce.
3. anything else                           -> REALLY_NEW

Limitation: only two items are compared. When two or more videos are uploaded
or removed between polls, intermediate uploads are not reconstructed; the head
of the playlist is classified by the rules above and nothing more.
"""

from new_tube.core.models import PlaylistItem, Snapshot, SyncOutcome


def classify(persisted: PlaylistItem, fresh: Snapshot) -> SyncOutcome:
    """Classify ``fresh`` against ``persisted``. Total over valid inputs."""
    latest_id = fresh.latest.id

    if latest_id == persisted.video_id:
        return SyncOutcome.same_as_before()

    item = PlaylistItem.from_snapshot(persisted.playlist_id, fresh)

    if latest_id == persisted.previous_video_id:
        return SyncOutcome.old_video_now_latest(item)

    return SyncOutcome.really_new(item)
