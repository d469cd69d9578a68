"""Runtime configuration read once from the environment"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from new_tube.core.models import ConfigError

BACKENDS = ("yt_dlp", "youtube_api")


@dataclass(frozen=True)
class Config:
    data_dir: Path
    fetch_backend: str = "yt_dlp"
    yt_dlp_path: str = "yt-dlp"
    fetch_timeout: float = 60.0
    youtube_api_key: Optional[str] = None
    youtube_refresh_token: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None
    google_client_secrets_file: Optional[Path] = None
    telegram_api_key: Optional[str] = None
    allowed_bot_user: Optional[str] = None
    default_channel_id: Optional[str] = None
    fetch_interval: float = 300.0
    check_interval: float = 0.5
    fetch_workers: int = 4
    log_level: str = "INFO"

    @property
    def db_path(self) -> Path:
        return self.data_dir / "new_tube.db"

    @property
    def log_file(self) -> Path:
        return self.data_dir / "new_tube.log"

    @property
    def lock_file(self) -> Path:
        return self.data_dir / ".new_tube.lock"

    @property
    def status_file(self) -> Path:
        return self.data_dir / "status.json"

    @property
    def dump_file(self) -> Path:
        return self.data_dir / "playlists.json"

    def require_telegram(self) -> None:
        missing = [
            name for name, value in (
                ("NEW_TUBE_TELEGRAM_API_KEY", self.telegram_api_key),
                ("NEW_TUBE_ALLOWED_BOT_USER", self.allowed_bot_user),
            ) if not value
        ]
        if missing:
            raise ConfigError(f"Missing config: {', '.join(missing)}")

    @property
    def google_client_credentials(self) -> Optional[tuple[str, str]]:
        if self.google_client_id and self.google_client_secret:
            return self.google_client_id, self.google_client_secret
        return None

    def require_youtube_api(self) -> None:
        if not (self.youtube_api_key or self.youtube_refresh_token):
            raise ConfigError("Missing config: YOUTUBE_API_KEY or YOUTUBE_REFRESH_TOKEN")
        if self.youtube_refresh_token and not self.google_client_secrets_file:
            missing = [
                name for name, value in (
                    ("GOOGLE_CLIENT_ID", self.google_client_id),
                    ("GOOGLE_CLIENT_SECRET", self.google_client_secret),
                ) if not value
            ]
            if missing:
                raise ConfigError(f"Missing config for OAuth: {', '.join(missing)}")


def _number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return cast(default)
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Build a Config from ``env`` (defaults to os.environ after loading .env)."""
    if env is None:
        load_dotenv()
        env = os.environ

    backend = env.get("NEW_TUBE_FETCH_BACKEND", "yt_dlp").strip().lower()
    if backend not in BACKENDS:
        raise ConfigError(f"NEW_TUBE_FETCH_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}")

    data_dir = env.get("NEW_TUBE_DATA_DIR") or str(Path.home() / ".new_tube")
    secrets_file = env.get("GOOGLE_CLIENT_SECRETS_FILE")

    return Config(
        data_dir=Path(data_dir).expanduser(),
        fetch_backend=backend,
        yt_dlp_path=env.get("NEW_TUBE_YT_DLP_PATH") or "yt-dlp",
        fetch_timeout=_number(env, "NEW_TUBE_FETCH_TIMEOUT", 60.0),
        youtube_api_key=env.get("YOUTUBE_API_KEY") or None,
        youtube_refresh_token=env.get("YOUTUBE_REFRESH_TOKEN") or None,
        google_client_id=env.get("GOOGLE_CLIENT_ID") or None,
        google_client_secret=env.get("GOOGLE_CLIENT_SECRET") or None,
        google_client_secrets_file=Path(secrets_file).expanduser() if secrets_file else None,
        telegram_api_key=env.get("NEW_TUBE_TELEGRAM_API_KEY") or None,
        allowed_bot_user=env.get("NEW_TUBE_ALLOWED_BOT_USER") or None,
        default_channel_id=env.get("NEW_TUBE_DEFAULT_CHANNEL_ID") or None,
        fetch_interval=_number(env, "NEW_TUBE_FETCH_INTERVAL", 300.0),
        check_interval=_number(env, "NEW_TUBE_CHECK_INTERVAL", 0.5),
        fetch_workers=_number(env, "NEW_TUBE_FETCH_WORKERS", 4, cast=int),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
