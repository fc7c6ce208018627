"""
Periodic sync scheduler

Channels registered with a sync_interval get a full sync enqueued every
interval. The interval lives on the channel row; the time of the last
scheduled enqueue is kept in memory and falls back to the channel's
last_synced after a restart.
"""
import threading
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..extensions import db
from ..utils.logger import get_logger
from .job_queue import JobQueue
from .sync.clock import Clock, get_clock
from .sync.store import SyncStore

logger = get_logger('scheduler')


class Scheduler:
    """Re-enqueues full syncs of registered channels."""

    def __init__(self, queue: JobQueue, store: Optional[SyncStore] = None, app=None,
                 clock: Optional[Clock] = None, default_interval: float = 21600,
                 tick_seconds: float = 60):
        self.queue = queue
        self.store = store or SyncStore()
        self.app = app
        self.clock = clock or get_clock()
        self.default_interval = default_interval
        self.tick_seconds = tick_seconds

        self._last_enqueued: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def register(self, channel_ref: str, interval: Optional[float] = None,
                 credential_ref: Optional[str] = None):
        """Create the channel if needed and schedule it every ``interval`` seconds."""
        interval = interval or self.default_interval
        channel = self.store.ensure_channel(channel_ref, credential_ref=credential_ref,
                                            sync_interval=interval)
        logger.info(f"Registered {channel_ref} for periodic sync every {interval:.0f}s")
        return channel

    def unregister(self, channel_ref: str) -> bool:
        channel = self.store.set_schedule(channel_ref, None)
        with self._lock:
            self._last_enqueued.pop(channel_ref, None)
        if channel is None:
            return False
        logger.info(f"Unregistered {channel_ref} from periodic sync")
        return True

    def due_channels(self) -> List[str]:
        now = self.clock.now()
        due = []
        for channel in self.store.scheduled_channels():
            with self._lock:
                last = self._last_enqueued.get(channel.channel_id)
            last = last or channel.last_synced
            if last is None or now - last >= timedelta(seconds=channel.sync_interval):
                due.append(channel.channel_id)
        return due

    def tick(self) -> int:
        """Enqueue a full sync for every channel whose interval has elapsed.

        Returns:
            Number of newly created jobs
        """
        created_count = 0
        for channel_id in self.due_channels():
            job, created = self.queue.enqueue(channel_id, 'full')
            with self._lock:
                self._last_enqueued[channel_id] = self.clock.now()
            if created:
                created_count += 1
                logger.debug(f"Scheduled sync of {channel_id}: job {job.id}")
        if created_count:
            logger.info(f"[Scheduler] Enqueued {created_count} periodic syncs")
        return created_count

    # ==================== Background thread ====================

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.app is None:
            raise RuntimeError('Scheduler needs a Flask app to run in the background')
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name='sync-scheduler', daemon=True)
        self._thread.start()
        logger.info(f"Scheduler started (tick every {self.tick_seconds}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def _loop(self) -> None:
        with self.app.app_context():
            while not self._stop_event.is_set():
                try:
                    self.tick()
                except Exception as e:
                    logger.error(f"[Scheduler] Tick failed: {e}")
                    db.session.rollback()
                finally:
                    db.session.remove()
                self._stop_event.wait(self.tick_seconds)
