"""
Scheduler Tests
"""
from datetime import timedelta

from tubesync.models import Channel, JobState, SyncJob


class TestScheduler:
    """Tests for periodic re-enqueueing."""

    def test_register_creates_channel_with_interval(self, services):
        services.scheduler.register('UC123', interval=600, credential_ref='brand')

        channel = Channel.query.filter_by(channel_id='UC123').first()
        assert channel.sync_interval == 600
        assert channel.credential_ref == 'brand'

    def test_register_uses_default_interval(self, services, app):
        channel = services.scheduler.register('UC123')

        assert channel.sync_interval == app.config['PERIODIC_SYNC_INTERVAL']

    def test_never_synced_channel_is_due_immediately(self, services):
        services.scheduler.register('UC123', interval=600)

        assert services.scheduler.tick() == 1

        job = SyncJob.query.one()
        assert job.channel_id == 'UC123'
        assert job.kind == 'full'

    def test_interval_is_respected(self, services, clock):
        services.scheduler.register('UC123', interval=600)
        services.scheduler.tick()
        services.queue.cancel(SyncJob.query.one().id)

        clock.advance(300)
        assert services.scheduler.tick() == 0

        clock.advance(300)
        assert services.scheduler.tick() == 1
        assert SyncJob.query.filter_by(state=JobState.PENDING).count() == 1

    def test_tick_deduplicates_with_queued_job(self, services, clock):
        services.scheduler.register('UC123', interval=600)
        services.scheduler.tick()

        clock.advance(600)
        assert services.scheduler.tick() == 0
        assert SyncJob.query.count() == 1

    def test_last_synced_is_used_after_restart(self, services, clock):
        channel = services.scheduler.register('UC123', interval=600)
        channel.last_synced = clock.now() - timedelta(seconds=100)
        services.store.session.commit()

        assert services.scheduler.tick() == 0

    def test_unregister_stops_scheduling(self, services):
        services.scheduler.register('UC123', interval=600)

        assert services.scheduler.unregister('UC123') is True
        assert services.scheduler.tick() == 0
        assert Channel.query.filter_by(channel_id='UC123').first().sync_interval is None

    def test_unregister_unknown_channel(self, services):
        assert services.scheduler.unregister('UCnope') is False

    def test_scheduled_job_runs(self, services, uc123):
        services.scheduler.register('UC123', interval=600)
        services.scheduler.tick()

        services.queue.run_pending()

        assert SyncJob.query.one().state == JobState.SUCCEEDED
