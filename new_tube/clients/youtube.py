"""
YouTube Data API v3 Snapshot Fetcher

Reads the newest items of a playlist with an API key, or with OAuth when a
refresh token is configured (needed for private playlists).
Includes retry logic for rate limiting and transient errors.

Quota costs per fetch:
- playlistItems.list: 1 unit
- videos.list: 1 unit (durations)
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Callable, TypeVar

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from new_tube.core.models import (
    ConfigError, FetchParseError, FetchTransportError, Snapshot, Video,
)

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/youtube.readonly"]
SNAPSHOT_SIZE = 2

_DURATION_RE = re.compile(
    r"^P(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$"
)

T = TypeVar('T')


class YouTubeAPIError(FetchTransportError):
    """YouTube API operation failed."""
    pass


class YouTubeQuotaExceededError(FetchTransportError):
    """YouTube API quota exceeded."""
    pass


def parse_duration(value: str) -> float:
    """Convert an ISO-8601 duration (``PT1H2M3S``) to seconds.

    Live streams report ``P0D``, which is 0.
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        raise FetchParseError(f"Invalid ISO-8601 duration: {value!r}")
    parts = {k: float(v) if v else 0.0 for k, v in match.groupdict().items()}
    return parts["days"] * 86400 + parts["hours"] * 3600 + parts["minutes"] * 60 + parts["seconds"]


def load_client_credentials(secrets_file: Path) -> tuple[str, str]:
    """Load OAuth client credentials from a client_secrets.json file."""
    try:
        secrets = json.loads(secrets_file.read_text())
        creds = secrets.get("installed") or secrets.get("web")
        if creds:
            return creds["client_id"], creds["client_secret"]
    except (OSError, ValueError, KeyError, AttributeError) as e:
        raise ConfigError(f"Failed to read OAuth client secrets from {secrets_file}: {e}") from e

    raise ConfigError(f"No installed or web client found in {secrets_file}")


class YouTubeClient:
    """YouTube Data API client with retry logic."""

    def __init__(self, api_key: str | None = None, refresh_token: str | None = None,
                 client_credentials: tuple[str, str] | None = None,
                 client_secrets_file: Path | None = None,
                 timeout: float = 60, service=None):
        if service is not None:
            self._service = service
        elif refresh_token:
            if client_credentials:
                client_id, client_secret = client_credentials
            elif client_secrets_file:
                client_id, client_secret = load_client_credentials(client_secrets_file)
            else:
                raise ConfigError(
                    "OAuth needs GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET or a client secrets file"
                )
            credentials = Credentials(
                token=None,
                refresh_token=refresh_token,
                token_uri=TOKEN_URI,
                client_id=client_id,
                client_secret=client_secret,
                scopes=SCOPES
            )
            http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=timeout))
            self._service = build("youtube", "v3", http=http, cache_discovery=False)
        elif api_key:
            self._service = build(
                "youtube", "v3", developerKey=api_key,
                http=httplib2.Http(timeout=timeout), cache_discovery=False
            )
        else:
            raise ConfigError("YouTube client needs an API key or an OAuth refresh token")
        logger.info("YouTube client initialized")

    def _retry(self, operation: Callable[[], T], name: str, max_retries: int = 3) -> T:
        """Execute operation with retry logic for transient errors."""
        for attempt in range(max_retries):
            try:
                return operation()
            except HttpError as e:
                status = e.resp.status if e.resp else 0
                error_str = str(e)

                # Quota exceeded - don't retry
                if status == 403 and "quotaExceeded" in error_str:
                    raise YouTubeQuotaExceededError(f"Quota exceeded: {e}")

                # Rate limit - wait and retry once
                if status in (403, 429) and "rateLimitExceeded" in error_str and attempt == 0:
                    logger.warning(f"Rate limited on {name}, waiting 60s...")
                    time.sleep(60)
                    continue

                # Server error - retry with backoff
                if status >= 500 and attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Server error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue

                raise YouTubeAPIError(f"API error on {name}: {e}")

            except RefreshError as e:
                raise YouTubeAPIError(f"OAuth token refresh failed on {name}: {e}") from e

            except (httplib2.HttpLib2Error, TransportError, ConnectionError, TimeoutError, OSError) as e:
                if attempt < max_retries - 1:
                    wait = 2 ** attempt
                    logger.warning(f"Network error on {name}, retrying in {wait}s...")
                    time.sleep(wait)
                    continue
                raise YouTubeAPIError(f"Network error on {name}: {e}")

        raise YouTubeAPIError(f"{name} failed after {max_retries} attempts")

    def _list_playlist_head(self, playlist_id: str) -> list[dict]:
        def do_list():
            return self._service.playlistItems().list(
                part="snippet,contentDetails",
                playlistId=playlist_id,
                maxResults=SNAPSHOT_SIZE
            ).execute(num_retries=0)

        response = self._retry(do_list, f"list playlist {playlist_id}")
        return list(response.get("items", []))[:SNAPSHOT_SIZE]

    def _get_durations(self, video_ids: list[str]) -> dict[str, float]:
        def do_videos():
            return self._service.videos().list(
                part="contentDetails",
                id=",".join(video_ids),
                maxResults=len(video_ids)
            ).execute(num_retries=0)

        response = self._retry(do_videos, f"video details {','.join(video_ids)}")
        durations = {}
        for video in response.get("items", []):
            raw = video.get("contentDetails", {}).get("duration")
            # Upcoming premieres have no duration yet
            durations[video.get("id", "")] = parse_duration(raw) if raw else 0.0
        return durations

    def _extract_video(self, item: dict, durations: dict[str, float]) -> Video:
        """Extract Video from a playlistItems resource."""
        snippet = item.get("snippet", {})
        content = item.get("contentDetails", {})
        video_id = content.get("videoId") or snippet.get("resourceId", {}).get("videoId")
        if not video_id:
            raise FetchParseError(f"Playlist item without video id: {item.get('id', '?')}")

        return Video(
            id=video_id,
            title=snippet.get("title", ""),
            uploader=snippet.get("videoOwnerChannelTitle") or snippet.get("channelTitle", ""),
            duration=durations.get(video_id, 0.0),
        )

    def fetch(self, playlist_id: str) -> Snapshot:
        """Return the two newest items of the playlist."""
        items = self._list_playlist_head(playlist_id)
        video_ids = [
            i.get("contentDetails", {}).get("videoId")
            for i in items
            if i.get("contentDetails", {}).get("videoId")
        ]
        durations = self._get_durations(video_ids) if video_ids else {}
        videos = [self._extract_video(item, durations) for item in items]
        logger.debug(f"Retrieved {len(videos)} items from {playlist_id}")
        return Snapshot.from_videos(playlist_id, videos)
