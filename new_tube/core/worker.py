"""
Polling Worker

Runs SyncEngine.sync_all on a background thread and hands every new video to
a notification sink.

The loop wakes up every ``check_interval`` seconds to look at its stop event
and only polls once enough ticks have passed to cover ``fetch_interval``, so
stop() returns quickly even with a poll period of several minutes. Stopping is
cooperative: a poll that is already running finishes first.

At most one loop is active: start() on a running worker stops the old loop
before spawning a new one, and polls from different loops never overlap.
"""

import logging
import math
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

from new_tube.core.models import DeliveryError, NewTubeError, NotifiableItem, SyncReport
from new_tube.core.status import write_running_status, write_status
from new_tube.core.sync_engine import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_FETCH_INTERVAL = 300.0
DEFAULT_CHECK_INTERVAL = 0.5


class NotificationSink(Protocol):
    def deliver(self, item: NotifiableItem) -> None: ...


class StopResult(Enum):
    STOPPED = "stopped"
    NOT_RUNNING = "not_running"


class PollingWorker:
    """Start/stop wrapper around a periodic sync loop."""

    def __init__(self, engine: SyncEngine,
                 fetch_interval: float = DEFAULT_FETCH_INTERVAL,
                 check_interval: float = DEFAULT_CHECK_INTERVAL,
                 status_file: Optional[Path] = None,
                 poll_on_start: bool = True,
                 on_report: Optional[Callable[[SyncReport], None]] = None):
        if check_interval <= 0 or fetch_interval <= 0:
            raise ValueError("fetch_interval and check_interval must be positive")
        self._engine = engine
        self._check_interval = check_interval
        self._ticks_per_poll = max(1, math.ceil(fetch_interval / check_interval))
        self._status_file = status_file
        self._poll_on_start = poll_on_start
        self._on_report = on_report

        self._state_lock = threading.Lock()
        self._poll_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._stop_event is not None

    def start(self, sink: NotificationSink) -> None:
        """Start polling for ``sink``; restarts the loop if one is running."""
        with self._state_lock:
            if self._stop_event is not None:
                logger.info("Worker already running, restarting")
                self._stop_locked()

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(sink, stop_event),
                name="new-tube-worker", daemon=True
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()
        logger.info("Worker started")

    def stop(self) -> StopResult:
        """Signal the loop to exit. Stopping an idle worker is a no-op."""
        with self._state_lock:
            if self._stop_event is None:
                logger.info("Worker was not started")
                return StopResult.NOT_RUNNING
            self._stop_locked()
        logger.info("Worker stopped")
        return StopResult.STOPPED

    def _stop_locked(self) -> None:
        self._stop_event.set()
        thread = self._thread
        self._stop_event = None
        self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._check_interval * 2)
            if thread.is_alive():
                logger.info("Worker is finishing an in-flight poll and will exit afterwards")

    def _run(self, sink: NotificationSink, stop_event: threading.Event) -> None:
        ticks = self._ticks_per_poll if self._poll_on_start else 0
        while not stop_event.is_set():
            if ticks >= self._ticks_per_poll:
                ticks = 0
                self._guarded_poll(sink, stop_event)
                continue
            if stop_event.wait(self._check_interval):
                break
            ticks += 1
        logger.debug("Worker loop exited")

    def _guarded_poll(self, sink: NotificationSink, stop_event: threading.Event) -> None:
        try:
            with self._poll_lock:
                # a restart may have happened while waiting for an older poll
                if stop_event.is_set():
                    return
                self._poll_locked(sink)
        except Exception:
            logger.exception("Unexpected error in worker loop, continuing")

    def poll_once(self, sink: NotificationSink) -> SyncReport:
        """Run one sync and deliver its results on the calling thread."""
        with self._poll_lock:
            return self._poll_locked(sink)

    def _poll_locked(self, sink: NotificationSink) -> SyncReport:
        if self._status_file:
            write_running_status(self._status_file)

        try:
            report = self._engine.sync_all()
        except NewTubeError as e:
            logger.error(f"Poll failed: {e}")
            report = SyncReport.failure(f"{type(e).__name__}: {e}")
        else:
            if report.notifiable:
                logger.info(f"Found {len(report.notifiable)} new videos")
            else:
                logger.info("Nothing found")
            self._deliver_all(sink, report)

        if self._status_file:
            write_status(report, self._status_file)
        if self._on_report:
            self._on_report(report)
        return report

    def _deliver_all(self, sink: NotificationSink, report: SyncReport) -> None:
        for item in report.notifiable:
            try:
                sink.deliver(item)
            except DeliveryError as e:
                logger.error(f"Delivery failed for {item.video_id} ({item.playlist_id}): {e}")
                report.delivery_failures.append(f"{item.playlist_id}/{item.video_id}: {e}")
