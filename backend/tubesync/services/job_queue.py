"""
Job queue - durable sync jobs dispatched to a fixed worker pool

The sync_jobs table is the queue and the observable job-state table at the
same time. Only this module changes job state.

State machine:
    pending -> running -> succeeded | failed | retrying | dead | cancelled
    retrying -> pending (once its backoff delay has passed)
"""
import json
import threading
from datetime import timedelta
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import JobState, SyncJob
from ..utils.logger import get_logger, log_job_transition
from .sync.backoff import BackoffPolicy
from .sync.clock import Clock, get_clock
from .sync.coordinator import KINDS, MODE_ENQUEUE, SyncCoordinator
from .sync.errors import InternalSyncError, SyncAlreadyInProgress
from .sync.result import (
    OUTCOME_CANCELLED,
    OUTCOME_TIMEOUT,
    SyncResult,
)

logger = get_logger('job_queue')


class JobQueue:
    """DB-backed queue of SyncJobs with a bounded worker pool.

    Workers claim pending jobs ordered by scheduled time, then insertion
    order, and run each one to completion through the SyncCoordinator.

    Example:
        >>> queue = JobQueue(coordinator, app=app)
        >>> job, created = queue.enqueue('UC123', 'full')
        >>> queue.run_pending()      # synchronous drain, or
        >>> queue.start()            # background worker pool
    """

    # How long to push a job back when its channel is busy
    IN_PROGRESS_DELAY = 5.0
    # Minimum seconds between heartbeat writes of one job
    HEARTBEAT_INTERVAL = 10.0

    def __init__(
        self,
        coordinator: SyncCoordinator,
        app=None,
        clock: Optional[Clock] = None,
        backoff: Optional[BackoffPolicy] = None,
        max_attempts: int = 3,
        pool_size: int = 3,
        poll_interval: float = 1.0,
        sync_deadline: Optional[float] = None
    ):
        """
        Args:
            coordinator: Executes the syncs
            app: Flask app whose context worker threads run in
            clock: Time source for scheduling
            backoff: Delay policy between job attempts
            max_attempts: Attempts before a job is dead-lettered
            pool_size: Number of worker threads
            poll_interval: Idle wait between claim attempts
            sync_deadline: Per-job sync time budget in seconds
        """
        self.coordinator = coordinator
        self.app = app
        self.clock = clock or get_clock()
        self.backoff = backoff or BackoffPolicy(base=30.0, cap=1800.0)
        self.max_attempts = max(1, max_attempts)
        self.pool_size = max(1, pool_size)
        self.poll_interval = poll_interval
        self.sync_deadline = sync_deadline or None

        self._enqueue_lock = threading.Lock()
        self._claim_lock = threading.Lock()
        self._cancel_events: Dict[int, threading.Event] = {}
        self._cancel_requested: Set[int] = set()
        self._cancel_lock = threading.Lock()
        self._last_heartbeat: Dict[int, float] = {}

        self._stop_event = threading.Event()
        self._workers: List[threading.Thread] = []

    # ==================== Enqueue / query ====================

    def enqueue(self, channel_ref: str, kind: str = 'full', run_at=None,
                force_refresh: bool = False) -> Tuple[SyncJob, bool]:
        """Queue a sync, or return the active job already queued for the channel and kind.

        Returns:
            (job, created) - created is False when the request was de-duplicated
        """
        if kind not in KINDS:
            raise ValueError(f'Unknown sync kind: {kind}')

        now = self.clock.now()
        scheduled_at = run_at or now

        with self._enqueue_lock:
            existing = SyncJob.query.filter(
                SyncJob.channel_id == channel_ref,
                SyncJob.kind == kind,
                SyncJob.state.in_(JobState.ACTIVE),
            ).order_by(SyncJob.id).first()

            if existing is not None:
                changed = False
                if existing.state != JobState.RUNNING:
                    # A manual trigger should not wait behind a later schedule
                    if scheduled_at < existing.scheduled_at:
                        existing.scheduled_at = scheduled_at
                        changed = True
                    if force_refresh and not existing.force_refresh:
                        existing.force_refresh = True
                        changed = True
                if changed:
                    self._commit()
                logger.info(f"Enqueue de-duplicated: {channel_ref}/{kind} -> job {existing.id} ({existing.state})")
                return existing, False

            job = SyncJob(
                channel_id=channel_ref,
                kind=kind,
                state=JobState.PENDING,
                attempt=0,
                max_attempts=self.max_attempts,
                force_refresh=force_refresh,
                scheduled_at=scheduled_at,
                created_at=now,
            )
            db.session.add(job)
            self._commit()

        logger.info(f"Enqueued job {job.id}: {channel_ref}/{kind} at {scheduled_at.isoformat()}")
        return job, True

    def get_job(self, job_id: int) -> Optional[SyncJob]:
        return db.session.get(SyncJob, job_id)

    def list_jobs(self, state: Optional[str] = None, channel_id: Optional[str] = None,
                  limit: int = 50) -> List[SyncJob]:
        query = SyncJob.query
        if state:
            query = query.filter(SyncJob.state == state)
        if channel_id:
            query = query.filter(SyncJob.channel_id == channel_id)
        return query.order_by(SyncJob.id.desc()).limit(limit).all()

    def cancel(self, job_id: int) -> Optional[SyncJob]:
        """Cancel a job.

        Waiting jobs are cancelled outright; a running job is flagged and
        stops at its next page boundary. Terminal jobs are left as they are.
        """
        job = self.get_job(job_id)
        if job is None:
            return None

        if job.state in (JobState.PENDING, JobState.RETRYING):
            self._transition(job, JobState.CANCELLED, reason='cancelled before start')
            job.finished_at = self.clock.now()
            self._commit()
        elif job.state == JobState.RUNNING:
            with self._cancel_lock:
                event = self._cancel_events.get(job.id)
                if event is not None:
                    self._cancel_requested.add(job.id)
            if event is not None:
                event.set()
                logger.info(f"Cancellation requested for running job {job.id}")
            else:
                logger.warning(f"Job {job.id} is running outside this process, cannot cancel it")
        return job

    def requeue(self, job_id: int) -> Optional[Tuple[SyncJob, bool]]:
        """Explicitly re-enqueue a dead, failed or cancelled job as a new job."""
        job = self.get_job(job_id)
        if job is None:
            return None
        if job.state not in (JobState.DEAD, JobState.FAILED, JobState.CANCELLED):
            raise ValueError(f'Job {job_id} is {job.state}; only dead, failed or cancelled jobs can be requeued')
        return self.enqueue(job.channel_id, job.kind, force_refresh=job.force_refresh)

    # ==================== Claim / execute ====================

    def claim_next(self) -> Optional[SyncJob]:
        """Claim the next due job for this worker, or None when nothing is due."""
        with self._claim_lock:
            now = self.clock.now()
            self._promote_due_retries(now)

            candidate = SyncJob.query.filter(
                SyncJob.state == JobState.PENDING,
                SyncJob.scheduled_at <= now,
            ).order_by(SyncJob.scheduled_at, SyncJob.id).first()
            if candidate is None:
                return None

            claimed = SyncJob.query.filter(
                SyncJob.id == candidate.id,
                SyncJob.state == JobState.PENDING,
            ).update(
                {
                    'state': JobState.RUNNING,
                    'attempt': SyncJob.attempt + 1,
                    'started_at': now,
                    'heartbeat': now,
                },
                synchronize_session=False
            )
            self._commit()
            if not claimed:
                return None

            db.session.refresh(candidate)
            log_job_transition(candidate.id, JobState.PENDING, JobState.RUNNING,
                               f'attempt {candidate.attempt}/{candidate.max_attempts}')
            return candidate

    def run_job(self, job: SyncJob) -> SyncJob:
        """Execute a claimed job and record its outcome."""
        job_id = job.id
        event = threading.Event()
        with self._cancel_lock:
            self._cancel_events[job_id] = event

        result: Optional[SyncResult] = None
        error = None
        requested = False
        try:
            result = self.coordinator.sync_channel(
                job.channel_id,
                kind=job.kind,
                force_refresh=job.force_refresh,
                mode=MODE_ENQUEUE,
                deadline=self.sync_deadline,
                cancel_event=event,
                on_page=lambda resource: self._touch(job_id),
            )
        except SyncAlreadyInProgress:
            self._release(job, self.IN_PROGRESS_DELAY, reason='channel busy')
            return job
        except Exception as e:
            logger.exception(f"Job {job_id} crashed: {e}")
            db.session.rollback()
            error = InternalSyncError(f'Unexpected error: {e}')
        finally:
            with self._cancel_lock:
                self._cancel_events.pop(job_id, None)
                requested = job_id in self._cancel_requested
                self._cancel_requested.discard(job_id)
            self._last_heartbeat.pop(job_id, None)

        if (result is not None and result.outcome == OUTCOME_CANCELLED
                and not requested and self._stop_event.is_set()):
            # Interrupted by stop(), not by a caller: run it again later
            self._release(job, 0.0, reason='worker shutdown', result=result)
            return job

        self._apply_outcome(job, result, error)
        return job

    def run_pending(self, limit: Optional[int] = None) -> int:
        """Run due jobs inline until none are left (or ``limit`` is reached)."""
        processed = 0
        while limit is None or processed < limit:
            job = self.claim_next()
            if job is None:
                break
            self.run_job(job)
            processed += 1
        return processed

    def _apply_outcome(self, job: SyncJob, result: Optional[SyncResult], error) -> None:
        db.session.refresh(job)
        now = self.clock.now()
        if result is not None:
            job.result = _dump(result)
            error = result.error
            retryable = result.retryable
        else:
            retryable = error is not None and error.retryable

        job.heartbeat = None

        if result is not None and result.outcome == OUTCOME_CANCELLED:
            job.last_error = 'Cancelled'
            job.finished_at = now
            self._transition(job, JobState.CANCELLED, reason='cancelled while running')
        elif result is not None and result.outcome == OUTCOME_TIMEOUT:
            job.last_error = 'Timeout: sync deadline exceeded, partial result kept'
            job.finished_at = now
            self._transition(job, JobState.SUCCEEDED, reason='timeout')
        elif error is None:
            job.last_error = None
            job.finished_at = now
            self._transition(job, JobState.SUCCEEDED, reason=result.outcome if result else None)
        elif not retryable:
            job.last_error = f'{error.kind}: {error.message}'
            job.finished_at = now
            self._transition(job, JobState.FAILED, reason=error.kind)
        elif job.attempt < job.max_attempts:
            delay = self.backoff.delay(job.attempt)
            job.last_error = f'{error.kind}: {error.message}'
            job.scheduled_at = now + timedelta(seconds=delay)
            self._transition(job, JobState.RETRYING, reason=f'{error.kind}, retry in {delay:.1f}s')
        else:
            job.last_error = f'{error.kind}: {error.message}'
            job.finished_at = now
            self._transition(job, JobState.DEAD, reason=f'{error.kind} after {job.attempt} attempts')

        self._commit()

    def _release(self, job: SyncJob, delay: float, reason: str,
                 result: Optional[SyncResult] = None) -> None:
        """Put a claimed job back to pending and give its attempt back."""
        db.session.refresh(job)
        if result is not None:
            job.result = _dump(result)
        job.attempt = max(0, job.attempt - 1)
        job.heartbeat = None
        job.scheduled_at = self.clock.now() + timedelta(seconds=delay)
        self._transition(job, JobState.PENDING, reason=reason)
        self._commit()

    def _promote_due_retries(self, now) -> None:
        due = SyncJob.query.filter(
            SyncJob.state == JobState.RETRYING,
            SyncJob.scheduled_at <= now,
        ).all()
        for job in due:
            self._transition(job, JobState.PENDING, reason='backoff elapsed')
        if due:
            self._commit()

    def _touch(self, job_id: int) -> None:
        """Heartbeat from inside a running sync, throttled."""
        now_mono = self.clock.monotonic()
        last = self._last_heartbeat.get(job_id)
        if last is not None and now_mono - last < self.HEARTBEAT_INTERVAL:
            return
        self._last_heartbeat[job_id] = now_mono
        try:
            SyncJob.query.filter_by(id=job_id).update(
                {'heartbeat': self.clock.now()},
                synchronize_session=False
            )
            db.session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to update heartbeat (job_id={job_id}): {e}")
            db.session.rollback()

    def _transition(self, job: SyncJob, new_state: str, reason: Optional[str] = None) -> None:
        if job.state in JobState.TERMINAL:
            raise ValueError(f'Job {job.id} is already {job.state}')
        old_state = job.state
        job.state = new_state
        log_job_transition(job.id, old_state, new_state, reason)

    @staticmethod
    def _commit() -> None:
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

    # ==================== Stale job recovery ====================

    def cleanup_stale_jobs(self, timeout_seconds: int = 300) -> int:
        """Recover jobs left running by a crashed process.

        A running job whose heartbeat is missing or older than the timeout
        goes back to pending, or to dead if it has used all its attempts.

        Returns:
            Number of jobs recovered
        """
        cutoff = self.clock.now() - timedelta(seconds=timeout_seconds)
        stale = SyncJob.query.filter(
            SyncJob.state == JobState.RUNNING,
            db.or_(SyncJob.heartbeat.is_(None), SyncJob.heartbeat < cutoff),
        ).all()

        with self._cancel_lock:
            local = set(self._cancel_events)

        recovered = 0
        for job in stale:
            if job.id in local:
                continue
            job.heartbeat = None
            job.last_error = 'Worker stopped without finishing (heartbeat timeout)'
            if job.attempt < job.max_attempts:
                job.scheduled_at = self.clock.now()
                self._transition(job, JobState.PENDING, reason='stale heartbeat')
            else:
                job.finished_at = self.clock.now()
                self._transition(job, JobState.DEAD, reason='stale heartbeat, attempts exhausted')
            recovered += 1

        if recovered:
            self._commit()
            logger.info(f"[StaleJobCleanup] Recovered {recovered} stale jobs")
        return recovered

    # ==================== Worker pool ====================

    @property
    def is_running(self) -> bool:
        return any(worker.is_alive() for worker in self._workers)

    def start(self) -> None:
        """Start the worker pool."""
        if self.app is None:
            raise RuntimeError('JobQueue needs a Flask app to run worker threads')
        if self.is_running:
            return
        self._stop_event.clear()
        self._workers = [
            threading.Thread(target=self._worker_loop, name=f'sync-worker-{i}', daemon=True)
            for i in range(self.pool_size)
        ]
        for worker in self._workers:
            worker.start()
        logger.info(f"Worker pool started: {self.pool_size} workers")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the worker pool.

        Running syncs stop at their next page boundary and their jobs go
        back to pending without using up an attempt.
        """
        self._stop_event.set()
        with self._cancel_lock:
            for event in self._cancel_events.values():
                event.set()
        for worker in self._workers:
            worker.join(timeout)
        self._workers = []
        logger.info("Worker pool stopped")

    def _worker_loop(self) -> None:
        with self.app.app_context():
            while not self._stop_event.is_set():
                try:
                    job = self.claim_next()
                    if job is None:
                        self._stop_event.wait(self.poll_interval)
                        continue
                    self.run_job(job)
                except Exception as e:
                    logger.error(f"[Worker] Loop error: {e}")
                    db.session.rollback()
                    self._stop_event.wait(self.poll_interval)
                finally:
                    db.session.remove()


def _dump(result: SyncResult) -> str:
    return json.dumps(result.to_dict(), ensure_ascii=False)
