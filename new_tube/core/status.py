"""Status file writer for external monitoring of the polling worker"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from new_tube.core.models import SyncReport

logger = logging.getLogger(__name__)


def _report_status(report: SyncReport) -> str:
    if report.success:
        return "success"
    if report.errors or not report.outcomes:
        return "failed"
    return "partial"


def write_status(report: SyncReport, status_file: Path) -> bool:
    all_errors = report.all_errors()
    data = {
        "status": _report_status(report),
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "playlists_checked": report.checked,
        "new_videos": len(report.notifiable),
        "corrections": report.corrections,
        "failed_playlists": [
            {"playlist_id": f.playlist_id, "error": f"{f.error_type}: {f.message}"}
            for f in report.failures
        ],
        "last_error": all_errors[-1] if all_errors else None,
    }
    return _atomic_write(status_file, data)


def write_running_status(status_file: Path) -> bool:
    data = {
        "status": "running",
        "last_sync_time": datetime.now(timezone.utc).isoformat(),
        "playlists_checked": 0,
        "new_videos": 0,
        "corrections": 0,
        "failed_playlists": [],
        "last_error": None,
    }
    return _atomic_write(status_file, data)


def _atomic_write(path: Path, data: dict) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".status_", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return True
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
    except Exception as e:
        logger.error(f"Status write failed: {e}")
        return False
