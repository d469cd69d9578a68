"""Data models for playlist tracking and sync operations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

VIDEO_URL = "https://www.youtube.com/watch?v={}"


class NewTubeError(Exception):
    """Base class for all new-tube errors."""
    pass


class ConfigError(NewTubeError):
    """Configuration is missing or invalid."""
    pass


class FetchError(NewTubeError):
    """Retrieving a playlist snapshot failed."""
    pass


class InsufficientItemsError(FetchError):
    """The playlist holds fewer than two videos."""

    def __init__(self, playlist_id: str, count: int):
        self.playlist_id = playlist_id
        self.count = count
        super().__init__(
            f"Playlist {playlist_id} has {count} video(s), at least 2 are required"
        )


class FetchTransportError(FetchError):
    """The process or HTTP call behind a fetch failed."""
    pass


class FetchParseError(FetchError):
    """The fetched data could not be parsed into videos."""
    pass


class StoreError(NewTubeError):
    """Reading or writing persisted playlist state failed."""
    pass


class DeliveryError(NewTubeError):
    """A notification could not be delivered."""
    pass


class ReplaceError(NewTubeError):
    """The old playlist was removed but the new one could not be added."""

    def __init__(self, old_id: str, new_id: str, reason: str):
        self.old_id = old_id
        self.new_id = new_id
        super().__init__(
            f"Playlist {old_id} was removed but {new_id} could not be added "
            f"(no row is tracked for either): {reason}"
        )


def format_duration(seconds: float) -> str:
    """Render seconds as H:MM:SS."""
    secs = int(max(seconds, 0))
    hours, rest = divmod(secs, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class Video:
    """A single video as reported by a playlist fetch."""
    id: str
    title: str
    uploader: str
    duration: float = 0.0


@dataclass(frozen=True)
class Snapshot:
    """The two newest videos of a playlist, taken from one fetch."""
    latest: Video
    previous: Video

    @classmethod
    def from_videos(cls, playlist_id: str, videos: List[Video]) -> "Snapshot":
        """Build a snapshot from videos in playlist order (newest first)."""
        if len(videos) < 2:
            raise InsufficientItemsError(playlist_id, len(videos))
        return cls(latest=videos[0], previous=videos[1])


@dataclass(frozen=True)
class NotifiableItem:
    """A video that should be announced."""
    playlist_id: str
    video_id: str
    title: str
    uploader: str
    duration: float

    @property
    def link(self) -> str:
        return VIDEO_URL.format(self.video_id)

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)


@dataclass(frozen=True)
class PlaylistItem:
    """Persisted state of one tracked playlist.

    ``video_id`` is the latest known video and ``previous_video_id`` the one
    right before it, both taken from the same fetch. The duration is zero for
    live streams and unknown lengths.
    """
    playlist_id: str
    video_id: str
    title: str
    uploader: str
    duration: float
    previous_video_id: str

    @classmethod
    def from_snapshot(cls, playlist_id: str, snapshot: Snapshot) -> "PlaylistItem":
        latest = snapshot.latest
        return cls(
            playlist_id=playlist_id,
            video_id=latest.id,
            title=latest.title,
            uploader=latest.uploader,
            duration=latest.duration,
            previous_video_id=snapshot.previous.id,
        )

    @property
    def link(self) -> str:
        return VIDEO_URL.format(self.video_id)

    @property
    def formatted_duration(self) -> str:
        return format_duration(self.duration)

    def to_notifiable(self) -> NotifiableItem:
        return NotifiableItem(
            playlist_id=self.playlist_id,
            video_id=self.video_id,
            title=self.title,
            uploader=self.uploader,
            duration=self.duration,
        )


class Outcome(Enum):
    """What changed in a playlist since the last poll."""
    REALLY_NEW = "really_new"
    OLD_VIDEO_NOW_LATEST = "old_video_now_latest"
    SAME_AS_BEFORE = "same_as_before"


@dataclass(frozen=True)
class SyncOutcome:
    """Classification of one playlist poll.

    ``item`` is the row to persist; it is None only for SAME_AS_BEFORE.
    """
    kind: Outcome
    item: Optional[PlaylistItem] = None

    @classmethod
    def really_new(cls, item: PlaylistItem) -> "SyncOutcome":
        return cls(Outcome.REALLY_NEW, item)

    @classmethod
    def old_video_now_latest(cls, item: PlaylistItem) -> "SyncOutcome":
        return cls(Outcome.OLD_VIDEO_NOW_LATEST, item)

    @classmethod
    def same_as_before(cls) -> "SyncOutcome":
        return cls(Outcome.SAME_AS_BEFORE)

    @property
    def requires_write(self) -> bool:
        return self.kind is not Outcome.SAME_AS_BEFORE

    @property
    def is_notifiable(self) -> bool:
        return self.kind is Outcome.REALLY_NEW


@dataclass(frozen=True)
class PlaylistFailure:
    """A playlist that could not be synced in a batch."""
    playlist_id: str
    error_type: str
    message: str

    @classmethod
    def from_error(cls, playlist_id: str, error: Exception) -> "PlaylistFailure":
        return cls(playlist_id, type(error).__name__, str(error))

    def __str__(self) -> str:
        return f"{self.playlist_id}: {self.error_type}: {self.message}"


@dataclass
class SyncReport:
    """Result of one sync over all tracked playlists.

    ``skipped`` holds playlists whose row was deleted or replaced while their
    snapshot was being fetched.
    """
    notifiable: List[NotifiableItem] = field(default_factory=list)
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    failures: List[PlaylistFailure] = field(default_factory=list)
    delivery_failures: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def failure(cls, error: str) -> "SyncReport":
        """Create a report for a sync that could not run at all."""
        return cls(errors=[error])

    @property
    def success(self) -> bool:
        return not (self.failures or self.delivery_failures or self.errors)

    @property
    def corrections(self) -> int:
        return sum(1 for o in self.outcomes.values() if o is Outcome.OLD_VIDEO_NOW_LATEST)

    @property
    def checked(self) -> int:
        return len(self.outcomes) + len(self.failures) + len(self.skipped)

    def all_errors(self) -> List[str]:
        return self.errors + [str(f) for f in self.failures] + self.delivery_failures
