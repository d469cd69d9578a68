"""
yt-dlp Snapshot Fetcher

Reads the head of a playlist by running ``yt-dlp --flat-playlist`` and parsing
one JSON object per output line. No download happens.
"""

import json
import logging
import subprocess

from new_tube.core.models import FetchParseError, FetchTransportError, Snapshot, Video

logger = logging.getLogger(__name__)

PLAYLIST_URL = "https://www.youtube.com/playlist?list={}"
SNAPSHOT_SIZE = 2


class YTDLPClient:
    """Fetches the two newest playlist items through the yt-dlp CLI."""

    def __init__(self, executable: str = "yt-dlp", timeout: float = 60):
        self._executable = executable
        self._timeout = timeout

    def _build_command(self, playlist_id: str) -> list[str]:
        return [
            self._executable,
            PLAYLIST_URL.format(playlist_id),
            "--flat-playlist",
            "--skip-download",
            "--quiet",
            "--no-warnings",
            "--dump-json",
            "--playlist-start", "1",
            "--playlist-end", str(SNAPSHOT_SIZE),
        ]

    def _run(self, playlist_id: str) -> str:
        cmd = self._build_command(playlist_id)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as e:
            raise FetchTransportError(
                f"yt-dlp timed out after {self._timeout}s for {playlist_id}"
            ) from e
        except OSError as e:
            raise FetchTransportError(f"Failed to execute {self._executable}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip().splitlines()
            reason = stderr[-1] if stderr else f"exit code {result.returncode}"
            raise FetchTransportError(f"yt-dlp failed for {playlist_id}: {reason}")
        return result.stdout or ""

    @staticmethod
    def _parse_video(entry: dict) -> Video:
        video_id = entry.get("id")
        if not video_id:
            raise FetchParseError(f"yt-dlp entry without id: {entry.get('title', '?')}")
        try:
            duration = float(entry.get("duration") or 0)
        except (TypeError, ValueError):
            raise FetchParseError(f"Invalid duration for {video_id}: {entry.get('duration')!r}")
        return Video(
            id=video_id,
            title=entry.get("title") or "",
            uploader=entry.get("channel") or entry.get("uploader") or "",
            duration=duration,
        )

    def parse_output(self, playlist_id: str, output: str) -> Snapshot:
        videos = []
        for line in output.splitlines():
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError as e:
                raise FetchParseError(f"Failed to parse yt-dlp output for {playlist_id}: {e}") from e
            if not isinstance(entry, dict):
                raise FetchParseError(f"Unexpected yt-dlp output for {playlist_id}: {line[:80]}")
            videos.append(self._parse_video(entry))
        return Snapshot.from_videos(playlist_id, videos)

    def fetch(self, playlist_id: str) -> Snapshot:
        logger.debug(f"Fetching {playlist_id} via yt-dlp")
        return self.parse_output(playlist_id, self._run(playlist_id))
