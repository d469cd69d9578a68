"""Export and re-import the list of tracked playlist IDs"""

import json
import logging
import os
import tempfile
from pathlib import Path

from new_tube.core.models import FetchError, NewTubeError, PlaylistFailure
from new_tube.core.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


def dump_playlist_ids(engine: SyncEngine, path: Path) -> list[str]:
    """Write all tracked playlist IDs to ``path`` as a JSON list."""
    ids = engine.playlist_ids()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".playlists_", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(ids, f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
    logger.info(f"Wrote {len(ids)} playlist IDs to {path}")
    return ids


def load_playlist_ids(path: Path) -> list[str]:
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except FileNotFoundError as e:
        raise NewTubeError(f"Playlist dump not found: {path}") from e
    except json.JSONDecodeError as e:
        raise NewTubeError(f"Playlist dump {path} is not valid JSON: {e}") from e

    if not isinstance(data, list) or not all(isinstance(i, str) for i in data):
        raise NewTubeError(f"Playlist dump {path} must be a JSON list of strings")
    return data


def restore_playlists(engine: SyncEngine, playlist_ids: list[str]) -> tuple[list[str], list[PlaylistFailure]]:
    """Add every playlist not tracked yet. A failing ID does not stop the rest."""
    tracked = set(engine.playlist_ids())
    added = []
    failures = []

    for playlist_id in playlist_ids:
        if playlist_id in tracked:
            logger.debug(f"{playlist_id} already tracked, skipping")
            continue
        try:
            engine.add_playlist(playlist_id)
            added.append(playlist_id)
            tracked.add(playlist_id)
        except FetchError as e:
            logger.warning(f"Could not add {playlist_id}: {e}")
            failures.append(PlaylistFailure.from_error(playlist_id, e))

    return added, failures
