"""
Job Queue Tests

Job lifecycle: de-duplication, claiming order, retries, dead-lettering,
cancellation and stale job recovery.
"""
import threading
import time
from datetime import timedelta

import pytest

from tubesync.extensions import db
from tubesync.models import JobState, SyncJob, Video
from tubesync.services.sync.errors import (
    CredentialInvalid,
    QuotaExceeded,
    ResourceNotFound,
    UpstreamUnavailable,
)
from conftest import make_video


def _run_claimed_job_in_thread(app, queue):
    """Claim and run the next job on a separate thread with its own app context."""
    def run():
        with app.app_context():
            queue.run_job(queue.claim_next())

    thread = threading.Thread(target=run)
    thread.start()
    return thread


def _wait_for_state(queue, job_id, state, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        db.session.expire_all()
        if queue.get_job(job_id).state == state:
            return True
        time.sleep(0.02)
    return False


class TestEnqueue:
    """Tests for enqueue and de-duplication."""

    def test_enqueue_creates_pending_job(self, services):
        job, created = services.queue.enqueue('UC123', 'full')

        assert created is True
        assert job.state == JobState.PENDING
        assert job.attempt == 0
        assert job.max_attempts == 3

    def test_duplicate_enqueue_returns_existing(self, services):
        first, _ = services.queue.enqueue('UC123', 'full')
        second, created = services.queue.enqueue('UC123', 'full')

        assert created is False
        assert second.id == first.id
        assert SyncJob.query.count() == 1

    def test_different_kind_is_separate_job(self, services):
        services.queue.enqueue('UC123', 'full')
        _, created = services.queue.enqueue('UC123', 'comments')

        assert created is True

    def test_force_refresh_is_merged(self, services):
        job, _ = services.queue.enqueue('UC123', 'full')
        services.queue.enqueue('UC123', 'full', force_refresh=True)

        assert services.queue.get_job(job.id).force_refresh is True

    def test_unknown_kind_rejected(self, services):
        with pytest.raises(ValueError):
            services.queue.enqueue('UC123', 'everything')


class TestClaim:
    """Tests for claim ordering."""

    def test_claim_orders_by_schedule_then_insertion(self, services, clock):
        later, _ = services.queue.enqueue('UCaaa', 'full', run_at=clock.now() + timedelta(seconds=10))
        first, _ = services.queue.enqueue('UCbbb', 'full')
        second, _ = services.queue.enqueue('UCccc', 'full')

        assert services.queue.claim_next().id == first.id
        assert services.queue.claim_next().id == second.id
        # Not due yet
        assert services.queue.claim_next() is None

        clock.advance(10)
        claimed = services.queue.claim_next()
        assert claimed.id == later.id
        assert claimed.state == JobState.RUNNING
        assert claimed.attempt == 1

    def test_running_job_is_still_deduplicated(self, services):
        job, _ = services.queue.enqueue('UC123', 'full')
        services.queue.claim_next()

        again, created = services.queue.enqueue('UC123', 'full')

        assert created is False
        assert again.id == job.id


class TestRunJob:
    """Tests for job outcomes."""

    def test_uc123_job_succeeds(self, services, uc123):
        job, _ = services.queue.enqueue('UC123', 'full')

        assert services.queue.run_pending() == 1

        job = services.queue.get_job(job.id)
        assert job.state == JobState.SUCCEEDED
        assert job.attempt == 1
        assert job.finished_at is not None
        assert job.get_result()['outcome'] == 'succeeded'
        assert Video.query.filter_by(channel_id='UC123').count() == 8

    def test_transient_failures_dead_letter_after_max_attempts(self, services, upstream, clock):
        upstream.channels['UC123'] = UpstreamUnavailable('channels unavailable after 4 attempts')
        job, _ = services.queue.enqueue('UC123', 'full')

        for expected_attempt in (1, 2):
            services.queue.run_pending()
            job = services.queue.get_job(job.id)
            assert job.state == JobState.RETRYING
            assert job.attempt == expected_attempt
            assert 'upstream_unavailable' in job.last_error
            # Nothing is due until the backoff delay passes
            assert services.queue.claim_next() is None
            clock.advance(3600)

        services.queue.run_pending()
        job = services.queue.get_job(job.id)
        assert job.state == JobState.DEAD
        assert job.attempt == 3

        clock.advance(3600)
        assert services.queue.run_pending() == 0
        assert upstream.calls.count(('channel', 'UC123')) == 3

    def test_retry_delay_grows(self, services, upstream, clock):
        upstream.channels['UC123'] = QuotaExceeded('quota')
        job, _ = services.queue.enqueue('UC123', 'full')

        services.queue.run_pending()
        first_delay = services.queue.get_job(job.id).scheduled_at - clock.now()
        clock.advance(3600)
        services.queue.run_pending()
        second_delay = services.queue.get_job(job.id).scheduled_at - clock.now()

        assert timedelta(seconds=24) <= first_delay <= timedelta(seconds=30)
        assert timedelta(seconds=48) <= second_delay <= timedelta(seconds=60)

    def test_retry_succeeds_once_upstream_recovers(self, services, uc123, clock):
        channel = uc123.channels['UC123']
        uc123.channels['UC123'] = UpstreamUnavailable('down')
        job, _ = services.queue.enqueue('UC123', 'videos')
        services.queue.run_pending()

        uc123.channels['UC123'] = channel
        clock.advance(3600)
        services.queue.run_pending()

        job = services.queue.get_job(job.id)
        assert job.state == JobState.SUCCEEDED
        assert job.attempt == 2
        assert job.last_error is None

    def test_credential_invalid_fails_without_retry(self, services, upstream):
        upstream.channels['UC123'] = CredentialInvalid('HTTP 401', credential_ref='default')
        job, _ = services.queue.enqueue('UC123', 'full')

        services.queue.run_pending()

        job = services.queue.get_job(job.id)
        assert job.state == JobState.FAILED
        assert 'credential_invalid' in job.last_error

    def test_not_found_fails_without_retry(self, services, upstream):
        job, _ = services.queue.enqueue('UCgone', 'full')

        services.queue.run_pending()

        assert services.queue.get_job(job.id).state == JobState.FAILED

    def test_partial_without_error_succeeds(self, services, uc123):
        uc123.comment_pages['v2'] = [ResourceNotFound('video removed')]
        job, _ = services.queue.enqueue('UC123', 'full')

        services.queue.run_pending()

        job = services.queue.get_job(job.id)
        assert job.state == JobState.SUCCEEDED
        assert job.get_result()['outcome'] == 'partial'

    def test_partial_page_failure_is_retried(self, services, upstream):
        upstream.add_channel('UC123')
        upstream.video_pages['UC123'] = [[make_video('v1')], UpstreamUnavailable('down')]
        job, _ = services.queue.enqueue('UC123', 'videos')

        services.queue.run_pending()

        job = services.queue.get_job(job.id)
        assert job.state == JobState.RETRYING
        assert Video.query.count() == 1

    def test_busy_channel_defers_without_consuming_attempt(self, services, uc123, clock):
        job, _ = services.queue.enqueue('UC123', 'full')
        claimed = services.queue.claim_next()
        entry, owner = services.coordinator.registry.acquire('UC123')
        try:
            services.queue.run_job(claimed)
        finally:
            services.coordinator.registry.release('UC123', None)

        job = services.queue.get_job(job.id)
        assert job.state == JobState.PENDING
        assert job.attempt == 0
        assert job.scheduled_at > clock.now()


class TestCancelAndRequeue:
    """Tests for cancel and requeue."""

    def test_cancel_pending_job(self, services):
        job, _ = services.queue.enqueue('UC123', 'full')

        services.queue.cancel(job.id)

        assert services.queue.get_job(job.id).state == JobState.CANCELLED
        assert services.queue.run_pending() == 0

    def test_cancel_terminal_job_is_noop(self, services, uc123):
        job, _ = services.queue.enqueue('UC123', 'full')
        services.queue.run_pending()

        services.queue.cancel(job.id)

        assert services.queue.get_job(job.id).state == JobState.SUCCEEDED

    def test_cancel_unknown_job(self, services):
        assert services.queue.cancel(12345) is None

    def test_cancel_running_job_stops_at_page_boundary(self, app, services, uc123):
        job, _ = services.queue.enqueue('UC123', 'full')
        job_id = job.id
        uc123.block = threading.Event()

        thread = _run_claimed_job_in_thread(app, services.queue)
        assert uc123.block.wait(5)
        try:
            db.session.expire_all()
            services.queue.cancel(job_id)
        finally:
            uc123.release.set()
            thread.join(5)

        db.session.expire_all()
        job = services.queue.get_job(job_id)
        assert job.state == JobState.CANCELLED
        assert job.attempt == 1
        assert job.get_result()['outcome'] == 'cancelled'
        # Channel step finished, videos never started
        assert Video.query.count() == 0
        assert ('videos', 'UC123', 0) not in uc123.calls

    def test_requeue_dead_job_creates_new_job(self, services, upstream, clock):
        upstream.channels['UC123'] = UpstreamUnavailable('down')
        services.queue.max_attempts = 1
        dead, _ = services.queue.enqueue('UC123', 'full')
        services.queue.run_pending()
        assert services.queue.get_job(dead.id).state == JobState.DEAD

        new_job, created = services.queue.requeue(dead.id)

        assert created is True
        assert new_job.id != dead.id
        assert new_job.state == JobState.PENDING
        assert services.queue.get_job(dead.id).state == JobState.DEAD

    def test_requeue_active_job_rejected(self, services):
        job, _ = services.queue.enqueue('UC123', 'full')

        with pytest.raises(ValueError):
            services.queue.requeue(job.id)


class TestStaleJobs:
    """Tests for stale running job recovery."""

    def _running_job(self, clock, attempt, heartbeat):
        job = SyncJob(
            channel_id='UC123', kind='full', state=JobState.RUNNING,
            attempt=attempt, max_attempts=3,
            scheduled_at=clock.now(), started_at=clock.now(), heartbeat=heartbeat,
        )
        db.session.add(job)
        db.session.commit()
        return job

    def test_stale_job_goes_back_to_pending(self, services, clock):
        job = self._running_job(clock, attempt=1, heartbeat=clock.now() - timedelta(minutes=10))

        assert services.queue.cleanup_stale_jobs(300) == 1

        job = services.queue.get_job(job.id)
        assert job.state == JobState.PENDING
        assert 'heartbeat' in job.last_error

    def test_stale_job_out_of_attempts_is_dead(self, services, clock):
        job = self._running_job(clock, attempt=3, heartbeat=None)

        services.queue.cleanup_stale_jobs(300)

        assert services.queue.get_job(job.id).state == JobState.DEAD

    def test_fresh_heartbeat_is_left_alone(self, services, clock):
        job = self._running_job(clock, attempt=1, heartbeat=clock.now() - timedelta(seconds=30))

        assert services.queue.cleanup_stale_jobs(300) == 0
        assert services.queue.get_job(job.id).state == JobState.RUNNING


class TestWorkerPool:
    """Tests for the background worker pool."""

    def test_workers_run_queued_job(self, services, uc123):
        queue = services.queue
        queue.pool_size = 1
        queue.poll_interval = 0.01
        job, _ = queue.enqueue('UC123', 'full')
        job_id = job.id

        queue.start()
        try:
            assert queue.is_running
            assert _wait_for_state(queue, job_id, JobState.SUCCEEDED)
        finally:
            queue.stop(timeout=5)

        assert not queue.is_running
        assert Video.query.filter_by(channel_id='UC123').count() == 8

    def test_start_requires_app(self, services):
        services.queue.app = None

        with pytest.raises(RuntimeError):
            services.queue.start()

    def test_stop_returns_running_job_to_pending(self, app, services, uc123):
        job, _ = services.queue.enqueue('UC123', 'full')
        job_id = job.id
        uc123.block = threading.Event()

        thread = _run_claimed_job_in_thread(app, services.queue)
        assert uc123.block.wait(5)
        try:
            services.queue.stop(timeout=0.1)
        finally:
            uc123.release.set()
            thread.join(5)

        db.session.expire_all()
        job = services.queue.get_job(job_id)
        assert job.state == JobState.PENDING
        assert job.attempt == 0
        assert job.finished_at is None

        # The interrupted job runs again on the next drain
        assert services.queue.run_pending() == 1
        job = services.queue.get_job(job_id)
        assert job.state == JobState.SUCCEEDED
        assert job.attempt == 1
