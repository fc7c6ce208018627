"""
Sync coordinator - drives one "sync channel" operation end to end

channel metadata -> videos (page by page) -> comments (video by video,
page by page), persisting as it goes. A failure stops further fetching but
never rolls back what was already committed.
"""
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ...utils.logger import get_logger, log_sync_event
from .clock import Clock, get_clock
from .errors import (
    InternalSyncError,
    ReconcileError,
    ResourceNotFound,
    SyncAlreadyInProgress,
    SyncCancelled,
    SyncError,
    SyncTimeout,
    UpstreamRejected,
)
from .reconciler import Reconciler
from .result import SyncResult
from .store import SyncStore

logger = get_logger('coordinator')

KIND_FULL = 'full'
KIND_VIDEOS = 'videos'
KIND_COMMENTS = 'comments'
KINDS = (KIND_FULL, KIND_VIDEOS, KIND_COMMENTS)

MODE_ENQUEUE = 'enqueue'
MODE_JOIN = 'join'
MODES = (MODE_ENQUEUE, MODE_JOIN)


@dataclass
class _InFlight:
    done: threading.Event = field(default_factory=threading.Event)
    result: Optional[SyncResult] = None


class InFlightRegistry:
    """Channel id -> completion signal of the sync currently running for it."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[str, _InFlight] = {}

    def acquire(self, channel_id: str) -> Tuple[_InFlight, bool]:
        """Register a sync; returns (entry, True) for the new owner, or the running entry and False."""
        with self._lock:
            entry = self._entries.get(channel_id)
            if entry is not None:
                return entry, False
            entry = _InFlight()
            self._entries[channel_id] = entry
            return entry, True

    def release(self, channel_id: str, result: Optional[SyncResult]) -> None:
        with self._lock:
            entry = self._entries.pop(channel_id, None)
        if entry is not None:
            entry.result = result
            entry.done.set()

    def is_running(self, channel_id: str) -> bool:
        with self._lock:
            return channel_id in self._entries

    def running(self) -> List[str]:
        with self._lock:
            return list(self._entries)


class _Checkpoint:
    """Cooperative cancellation/deadline check, consulted only between pages and resources."""

    def __init__(self, cancel_event: Optional[threading.Event], deadline_at: Optional[float], clock: Clock,
                 on_page: Optional[Callable[[str], None]] = None):
        self.cancel_event = cancel_event
        self.deadline_at = deadline_at
        self.clock = clock
        self.on_page = on_page

    def page_done(self, resource: str) -> None:
        if self.on_page is not None:
            self.on_page(resource)
        self.check()

    def remaining(self) -> Optional[float]:
        if self.deadline_at is None:
            return None
        return max(0.0, self.deadline_at - self.clock.monotonic())

    def check(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelled('Sync cancelled')
        if self.deadline_at is not None and self.clock.monotonic() >= self.deadline_at:
            raise SyncTimeout('Sync deadline exceeded')


class SyncCoordinator:
    """Orchestrates channel syncs with at most one in flight per channel.

    Example:
        >>> coordinator = SyncCoordinator(client_factory)
        >>> result = coordinator.sync_channel('UC123', kind='full')
        >>> result.outcome, result.to_dict()['resources']['videos']
    """

    def __init__(
        self,
        client_factory: Callable[[str], object],
        store: Optional[SyncStore] = None,
        reconciler: Optional[Reconciler] = None,
        registry: Optional[InFlightRegistry] = None,
        clock: Optional[Clock] = None,
        default_credential: str = 'default'
    ):
        """
        Args:
            client_factory: Returns a RateLimitedClient for a credential reference
            store: Persistence layer
            reconciler: Diff engine
            registry: In-flight registry (shared by every caller of this coordinator)
            clock: Time source for deadlines and timestamps
            default_credential: Credential used when the channel has none
        """
        self.client_factory = client_factory
        self.store = store or SyncStore()
        self.reconciler = reconciler or Reconciler()
        self.registry = registry or InFlightRegistry()
        self.clock = clock or get_clock()
        self.default_credential = default_credential

    def sync_channel(
        self,
        channel_ref: str,
        kind: str = KIND_FULL,
        force_refresh: bool = False,
        mode: str = MODE_ENQUEUE,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
        credential_ref: Optional[str] = None,
        on_page: Optional[Callable[[str], None]] = None
    ) -> SyncResult:
        """Sync one channel.

        Args:
            channel_ref: Upstream channel id
            kind: 'full', 'videos' or 'comments'
            force_refresh: Bypass the response cache
            mode: What to do if the channel is already syncing:
                'enqueue' raises SyncAlreadyInProgress, 'join' waits for
                the running sync and returns its result
            deadline: Overall time budget in seconds; exceeding it ends the
                sync like a cancellation with outcome 'timeout'
            cancel_event: Set by another thread to cancel cooperatively
            credential_ref: Override the channel's credential
            on_page: Called with the resource name after every persisted page

        Raises:
            SyncAlreadyInProgress: In 'enqueue' mode when a sync is running
            SyncTimeout: In 'join' mode when the running sync outlives the deadline
        """
        if kind not in KINDS:
            raise ValueError(f'Unknown sync kind: {kind}')
        if mode not in MODES:
            raise ValueError(f'Unknown sync mode: {mode}')

        deadline_at = self.clock.monotonic() + deadline if deadline else None
        entry, owner = self.registry.acquire(channel_ref)

        if not owner:
            if mode == MODE_ENQUEUE:
                logger.info(f"[InFlight] {channel_ref} already syncing, rejecting duplicate")
                raise SyncAlreadyInProgress(channel_ref)
            logger.info(f"[InFlight] {channel_ref} already syncing, joining")
            timeout = max(0.0, deadline_at - self.clock.monotonic()) if deadline_at is not None else None
            if not entry.done.wait(timeout):
                raise SyncTimeout(f'Timed out waiting for in-flight sync of {channel_ref}')
            return entry.result

        result = None
        try:
            checkpoint = _Checkpoint(cancel_event, deadline_at, self.clock, on_page)
            result = self._run(channel_ref, kind, force_refresh, checkpoint, credential_ref)
            return result
        finally:
            self.registry.release(channel_ref, result)

    # ==================== Steps ====================

    def _run(self, channel_ref: str, kind: str, force_refresh: bool,
             checkpoint: _Checkpoint, credential_ref: Optional[str]) -> SyncResult:
        result = SyncResult(channel_ref, kind, started_at=self.clock.now())
        log_sync_event(channel_ref, 'started', {'kind': kind, 'force_refresh': force_refresh})
        current = 'channel'

        try:
            checkpoint.check()
            # The row is only created once upstream has confirmed the channel
            channel_row = self.store.get_channel(channel_ref)
            stored_credential = channel_row.credential_ref if channel_row is not None else None
            credential = credential_ref or stored_credential or self.default_credential
            client = self.client_factory(credential)

            self._sync_channel_metadata(client, channel_ref, channel_row, force_refresh, result)

            if kind in (KIND_FULL, KIND_VIDEOS):
                current = 'videos'
                checkpoint.check()
                self._sync_videos(client, channel_ref, force_refresh, checkpoint, result)

            if kind in (KIND_FULL, KIND_COMMENTS):
                current = 'comments'
                checkpoint.check()
                self._sync_comments(client, channel_ref, force_refresh, checkpoint, result)

        except (SyncCancelled, SyncTimeout) as e:
            logger.info(f"[Sync] {channel_ref} stopped during {current}: {e.message}")
            result.interrupt(current, e)
        except SyncError as e:
            logger.warning(f"[Sync] {channel_ref} {current} step failed: {e.kind}: {e.message}")
            result.fail(current, e)
        except Exception as e:
            logger.exception(f"[Sync] {channel_ref} {current} step crashed: {e}")
            result.fail(current, InternalSyncError(f'Unexpected error: {e}'))

        result.finalize(self.clock.now())
        log_sync_event(channel_ref, 'finished', {
            'outcome': result.outcome,
            'writes': result.writes,
        })
        return result

    def _sync_channel_metadata(self, client, channel_id: str, channel_row, force_refresh: bool,
                               result: SyncResult) -> None:
        payload = client.fetch_channel(channel_id, force_refresh=force_refresh)
        if payload.channel_id != channel_id:
            raise ReconcileError(f'Fetched channel {payload.channel_id} does not match requested {channel_id}')
        op = self.reconciler.reconcile_channel(channel_row, payload)
        now = self.clock.now()
        stats = self.store.apply([op], synced_at=now)
        self.store.mark_channel_synced(channel_id, now)
        result.record_page('channel', 1, stats)
        result.complete('channel')

    def _sync_videos(self, client, channel_id: str, force_refresh: bool,
                     checkpoint: _Checkpoint, result: SyncResult) -> None:
        for page in client.iter_video_pages(channel_id, force_refresh=force_refresh):
            stored = self.store.get_videos(channel_id, [v.video_id for v in page.items])
            ops = self.reconciler.reconcile_videos(channel_id, stored, page.items)
            stats = self.store.apply(ops, synced_at=self.clock.now())
            result.record_page('videos', len(page.items), stats)
            logger.debug(
                f"[Sync] {channel_id} videos page {result.resources['videos'].pages}: "
                f"{stats.inserted} new, {stats.updated} updated, {stats.unchanged} unchanged"
            )
            checkpoint.page_done('videos')
        result.complete('videos')

    def _sync_comments(self, client, channel_id: str, force_refresh: bool,
                       checkpoint: _Checkpoint, result: SyncResult) -> None:
        for video_id in self.store.list_video_ids(channel_id):
            checkpoint.check()
            try:
                for page in client.iter_comment_pages(video_id, force_refresh=force_refresh):
                    stored = self.store.get_comments(video_id, [c.comment_id for c in page.items])
                    ops = self.reconciler.reconcile_comments(video_id, stored, page.items)
                    stats = self.store.apply(ops, synced_at=self.clock.now())
                    result.record_page('comments', len(page.items), stats)
                    checkpoint.page_done('comments')
            except (ResourceNotFound, UpstreamRejected) as e:
                # Removed or private video: record it and move on
                logger.warning(f"[Sync] Comments of {video_id} skipped: {e.message}")
                issue_type = SyncResult.TYPE_NOT_FOUND if isinstance(e, ResourceNotFound) else SyncResult.TYPE_REJECTED
                result.add_issue(issue_type, e.message, resource_id=video_id)
                result.mark_partial('comments')
        result.complete('comments')
