#!/usr/bin/env python3
"""new-tube - track YouTube playlists and announce new videos"""

import argparse
import fcntl
import json
import logging
import os
import sys
import time
from dataclasses import asdict
from pathlib import Path

from new_tube.bot import Bot
from new_tube.clients.telegram import TelegramClient
from new_tube.clients.youtube import YouTubeClient
from new_tube.clients.yt_dlp import YTDLPClient
from new_tube.config import Config, load_config
from new_tube.core.dump import dump_playlist_ids, load_playlist_ids, restore_playlists
from new_tube.core.models import NewTubeError
from new_tube.core.store import PlaylistStore
from new_tube.core.sync_engine import SnapshotFetcher, SyncEngine
from new_tube.core.worker import PollingWorker

STALE_LOCK_SECONDS = 1800

logger = logging.getLogger(__name__)


def setup_logging(config: Config) -> None:
    level = getattr(logging, config.log_level, logging.INFO)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.FileHandler(config.log_file, encoding="utf-8"),
            logging.StreamHandler()
        ]
    )
    # googleapiclient logs every discovery lookup at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)


def acquire_lock(lock_file: Path) -> int | None:
    try:
        # Check for stale lock (older than 30 min = likely orphaned)
        if lock_file.exists():
            age = time.time() - lock_file.stat().st_mtime
            if age > STALE_LOCK_SECONDS:
                logger.warning(f"Removing stale lock file (age: {age:.0f}s)")
                lock_file.unlink(missing_ok=True)

        fd = os.open(str(lock_file), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise
        os.write(fd, f"{os.getpid()}\n".encode())
        return fd
    except OSError:
        return None


def release_lock(fd: int, lock_file: Path) -> None:
    try:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        lock_file.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to release lock {lock_file}: {e}")


def build_fetcher(config: Config) -> SnapshotFetcher:
    if config.fetch_backend == "youtube_api":
        config.require_youtube_api()
        return YouTubeClient(
            api_key=config.youtube_api_key,
            refresh_token=config.youtube_refresh_token,
            client_credentials=config.google_client_credentials,
            client_secrets_file=config.google_client_secrets_file,
            timeout=config.fetch_timeout,
        )
    return YTDLPClient(config.yt_dlp_path, timeout=config.fetch_timeout)


def _print_item(uploader: str, title: str, duration: str, link: str) -> None:
    print(f"{uploader} | {title} | {duration} | {link}")


def cmd_add(engine: SyncEngine, config: Config, args) -> int:
    item = engine.add_playlist(args.playlist_id)
    print(f"Added {item.playlist_id}, latest video: {item.title}")
    return 0


def cmd_replace(engine: SyncEngine, config: Config, args) -> int:
    item = engine.replace_playlist(args.old_id, args.new_id)
    print(f"Replaced {args.old_id} with {item.playlist_id}, latest video: {item.title}")
    return 0


def cmd_delete(engine: SyncEngine, config: Config, args) -> int:
    if engine.delete_playlist(args.playlist_id):
        print(f"Removed {args.playlist_id}")
    else:
        print(f"{args.playlist_id} was not tracked")
    return 0


def cmd_new(engine: SyncEngine, config: Config, args) -> int:
    report = engine.sync_all()

    if args.json:
        print(json.dumps([asdict(item) for item in report.notifiable], ensure_ascii=False))
    else:
        for item in report.notifiable:
            _print_item(item.uploader, item.title, item.formatted_duration, item.link)
        if not report.notifiable:
            print("No new videos")

    for failure in report.failures:
        print(f"Failed: {failure}", file=sys.stderr)
    return 0 if report.success else 1


def cmd_last(engine: SyncEngine, config: Config, args) -> int:
    items = engine.last_items()
    for item in items:
        _print_item(item.uploader, item.title, item.formatted_duration, item.link)
    if not items:
        print("No playlists tracked")
    return 0


def cmd_dump(engine: SyncEngine, config: Config, args) -> int:
    path = Path(args.file) if args.file else config.dump_file
    ids = dump_playlist_ids(engine, path)
    print(f"Wrote {len(ids)} playlist IDs to {path}")
    return 0


def cmd_load(engine: SyncEngine, config: Config, args) -> int:
    path = Path(args.file) if args.file else config.dump_file
    added, failures = restore_playlists(engine, load_playlist_ids(path))
    print(f"Added {len(added)} playlists")
    for failure in failures:
        print(f"Failed: {failure}", file=sys.stderr)
    return 0 if not failures else 1


def cmd_bot(engine: SyncEngine, config: Config, args) -> int:
    config.require_telegram()
    telegram = TelegramClient(config.telegram_api_key)
    worker = PollingWorker(
        engine,
        fetch_interval=config.fetch_interval,
        check_interval=config.check_interval,
        status_file=config.status_file,
    )
    bot = Bot(
        telegram, worker, engine,
        allowed_user=config.allowed_bot_user,
        default_chat_id=config.default_channel_id,
    )
    try:
        bot.run()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


COMMANDS = {
    "add": cmd_add,
    "replace": cmd_replace,
    "delete": cmd_delete,
    "new": cmd_new,
    "last": cmd_last,
    "dump": cmd_dump,
    "load": cmd_load,
    "bot": cmd_bot,
}

# commands that poll must not run twice against one database
LOCKED_COMMANDS = {"new", "bot"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="new-tube",
        description="Track YouTube playlists and announce new videos"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Track a playlist (an 'all uploads' playlist id)")
    add.add_argument("playlist_id")

    replace = sub.add_parser("replace", help="Replace a tracked playlist with another")
    replace.add_argument("old_id")
    replace.add_argument("new_id")

    delete = sub.add_parser("delete", help="Stop tracking a playlist")
    delete.add_argument("playlist_id")

    new = sub.add_parser("new", help="Check every playlist once and print new videos")
    new.add_argument("--json", action="store_true", help="Print new videos as JSON")

    sub.add_parser("last", help="Show the stored latest video of every playlist (no network)")

    dump = sub.add_parser("dump", help="Write tracked playlist IDs to a JSON file")
    dump.add_argument("--file", help="Target file (default: <data dir>/playlists.json)")

    load = sub.add_parser("load", help="Track every playlist ID from a JSON dump")
    load.add_argument("--file", help="Source file (default: <data dir>/playlists.json)")

    sub.add_parser("bot", help="Run the Telegram bot and the background worker")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
    except NewTubeError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    setup_logging(config)

    lock_fd = None
    if args.command in LOCKED_COMMANDS:
        lock_fd = acquire_lock(config.lock_file)
        if lock_fd is None:
            logger.warning("Another new-tube poller is running, exiting")
            return 1

    store = None
    try:
        store = PlaylistStore(config.db_path)
        engine = SyncEngine(store, build_fetcher(config), max_workers=config.fetch_workers)
        return COMMANDS[args.command](engine, config, args)
    except NewTubeError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1
    finally:
        if store is not None:
            store.close()
        if lock_fd is not None:
            release_lock(lock_fd, config.lock_file)


if __name__ == "__main__":
    sys.exit(main())
