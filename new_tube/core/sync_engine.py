"""
Sync Engine

Keeps the persisted "latest video" of every tracked playlist in step with the
platform and collects the videos worth announcing.

Per playlist and poll:
1. Fetch a snapshot (newest two items) of the playlist
2. Classify it against the stored row (see core.classifier)
3. Overwrite the row for REALLY_NEW and OLD_VIDEO_NOW_LATEST, but only if it
   still holds the video read before the fetch (a playlist deleted or
   replaced meanwhile is skipped, never re-created)
4. Surface REALLY_NEW only

Fetch failures are isolated per playlist: the failing playlist is recorded on
the report under its ID and the rest of the batch continues. Store failures
abort the operation in progress. Nothing is retried here; the worker loop
simply tries again on its next tick.

Fetches may run concurrently; classification and writes stay on the calling
thread so each playlist row is read and written by one poll at a time.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, Optional, Protocol

from new_tube.core.classifier import classify
from new_tube.core.models import (
    FetchError, NewTubeError, Outcome, PlaylistFailure, PlaylistItem, ReplaceError,
    Snapshot, SyncOutcome, SyncReport,
)
from new_tube.core.store import PlaylistStore

logger = logging.getLogger(__name__)


class SnapshotFetcher(Protocol):
    def fetch(self, playlist_id: str) -> Snapshot: ...


class SyncEngine:
    """Adds, removes and syncs tracked playlists."""

    def __init__(self, store: PlaylistStore, fetcher: SnapshotFetcher, max_workers: int = 1):
        self._store = store
        self._fetcher = fetcher
        self._max_workers = max(1, max_workers)

    @property
    def store(self) -> PlaylistStore:
        return self._store

    def _fetch_all(self, playlist_ids: list[str]) -> Iterable[tuple[str, Snapshot | FetchError]]:
        """Yield (playlist_id, snapshot or fetch error) as fetches complete."""
        def fetch_one(playlist_id: str) -> Snapshot | FetchError:
            try:
                return self._fetcher.fetch(playlist_id)
            except FetchError as e:
                return e

        if self._max_workers == 1 or len(playlist_ids) < 2:
            for playlist_id in playlist_ids:
                yield playlist_id, fetch_one(playlist_id)
            return

        workers = min(self._max_workers, len(playlist_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            futures = {pool.submit(fetch_one, pid): pid for pid in playlist_ids}
            for future in as_completed(futures):
                yield futures[future], future.result()

    def _apply(self, persisted: PlaylistItem, fresh: Snapshot) -> Optional[SyncOutcome]:
        """Classify and write. Returns None if the row changed during the fetch."""
        outcome = classify(persisted, fresh)
        if outcome.requires_write and not self._store.update_if_current(outcome.item, persisted.video_id):
            logger.info(f"{persisted.playlist_id} was removed or changed while fetching, skipping")
            return None

        if outcome.kind is Outcome.REALLY_NEW:
            logger.info(f"New video in {persisted.playlist_id}: {outcome.item.title}")
        elif outcome.kind is Outcome.OLD_VIDEO_NOW_LATEST:
            logger.info(
                f"Latest video {persisted.video_id} of {persisted.playlist_id} was removed, "
                f"{outcome.item.video_id} is latest again"
            )
        else:
            logger.debug(f"No change in {persisted.playlist_id}")
        return outcome

    def sync_playlist(self, persisted: PlaylistItem) -> Optional[SyncOutcome]:
        """Fetch, classify and persist a single playlist. Raises FetchError.

        Returns None when the row was deleted or replaced while fetching.
        """
        fresh = self._fetcher.fetch(persisted.playlist_id)
        return self._apply(persisted, fresh)

    def sync_all(self) -> SyncReport:
        """Sync every tracked playlist. Returns the videos worth announcing."""
        start = time.time()
        report = SyncReport()

        logger.info("=" * 50)
        persisted = {item.playlist_id: item for item in self._store.get_all()}
        logger.info(f"Checking {len(persisted)} playlists")

        for playlist_id, result in self._fetch_all(list(persisted)):
            if isinstance(result, FetchError):
                logger.warning(f"Fetch failed for {playlist_id}: {result}")
                report.failures.append(PlaylistFailure.from_error(playlist_id, result))
                continue

            outcome = self._apply(persisted[playlist_id], result)
            if outcome is None:
                report.skipped.append(playlist_id)
                continue
            report.outcomes[playlist_id] = outcome.kind
            if outcome.is_notifiable:
                report.notifiable.append(outcome.item.to_notifiable())

        report.duration = time.time() - start
        logger.info(
            f"Completed in {report.duration:.1f}s: {len(report.notifiable)} new, "
            f"{report.corrections} corrected, {len(report.failures)} failed"
        )
        logger.info("=" * 50)
        return report

    def add_playlist(self, playlist_id: str) -> PlaylistItem:
        """Start tracking a playlist, seeded from one fetch.

        The fetched pair is stored as-is; no classification happens because no
        prior row exists. Raises FetchError (InsufficientItemsError for new or
        empty playlists) without writing anything.
        """
        snapshot = self._fetcher.fetch(playlist_id)
        item = PlaylistItem.from_snapshot(playlist_id, snapshot)
        self._store.upsert(item)
        logger.info(f"Tracking {playlist_id}, latest: {item.title} ({item.video_id})")
        return item

    def replace_playlist(self, old_id: str, new_id: str) -> PlaylistItem:
        """Swap a tracked playlist for another.

        Not transactional: when adding ``new_id`` fails after ``old_id`` was
        deleted, ReplaceError is raised so the caller knows a row is missing.
        """
        self.delete_playlist(old_id)
        try:
            return self.add_playlist(new_id)
        except NewTubeError as e:
            raise ReplaceError(old_id, new_id, str(e)) from e

    def delete_playlist(self, playlist_id: str) -> bool:
        """Stop tracking a playlist. Deleting an unknown ID is not an error."""
        removed = self._store.delete(playlist_id)
        if removed:
            logger.info(f"Removed {playlist_id}")
        else:
            logger.debug(f"{playlist_id} was not tracked")
        return removed

    def last_items(self) -> list[PlaylistItem]:
        """Stored latest video of every playlist. Does not touch the network."""
        return self._store.get_all()

    def playlist_ids(self) -> list[str]:
        return self._store.playlist_ids()
