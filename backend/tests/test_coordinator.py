"""
Sync Coordinator Tests

End-to-end channel syncs against a scripted upstream.
"""
import threading

import pytest

from tubesync.extensions import db
from tubesync.models import Channel, Comment, Video
from tubesync.services.sync.errors import (
    CredentialInvalid,
    SyncAlreadyInProgress,
    UpstreamRejected,
    UpstreamUnavailable,
)
from conftest import make_comment, make_video


class TestFullSync:
    """Tests for a complete channel sync."""

    def test_uc123_two_pages(self, services, uc123):
        """Pages of 5 and 3 videos end up as 8 rows owned by UC123."""
        result = services.coordinator.sync_channel('UC123', kind='full')

        assert result.outcome == 'succeeded'
        videos = Video.query.filter_by(channel_id='UC123').all()
        assert len(videos) == 8
        assert {v.channel_id for v in videos} == {'UC123'}

        status = result.resources['videos']
        assert status.pages == 2
        assert status.inserted == 8
        assert result.resources['comments'].inserted == 2
        assert Comment.query.filter_by(video_id='v1').count() == 2

        channel = Channel.query.filter_by(channel_id='UC123').first()
        assert channel.title == 'Test Channel'
        assert channel.subscriber_count == 1000
        assert channel.last_synced is not None

    def test_second_sync_is_idempotent(self, services, uc123):
        """Repeating a sync with no upstream change writes nothing."""
        services.coordinator.sync_channel('UC123')
        second = services.coordinator.sync_channel('UC123')

        assert second.outcome == 'succeeded'
        assert second.writes == 0
        assert second.resources['videos'].unchanged == 8
        assert Video.query.count() == 8

    def test_changed_fields_are_replaced(self, services, uc123, clock):
        services.coordinator.sync_channel('UC123')
        first_synced = Video.query.filter_by(video_id='v2').first().last_synced

        clock.advance(60)
        uc123.video_pages['UC123'][0][1] = make_video('v2', title='Renamed', views=500, published_day=2)
        result = services.coordinator.sync_channel('UC123', kind='videos')

        video = Video.query.filter_by(video_id='v2').first()
        assert video.title == 'Renamed'
        assert video.view_count == 500
        assert video.last_synced > first_synced
        assert result.resources['videos'].updated == 1
        assert result.resources['comments'].status == 'skipped'

        # Untouched rows keep their previous sync stamp
        assert Video.query.filter_by(video_id='v3').first().last_synced == first_synced

    def test_sentiment_survives_resync(self, services, uc123):
        services.coordinator.sync_channel('UC123')
        comment = Comment.query.filter_by(comment_id='c1').first()
        comment.sentiment = 'positive'
        db.session.commit()

        uc123.comment_pages['v1'][0][0] = make_comment('c1', 'v1', text='Edited text', likes=7)
        services.coordinator.sync_channel('UC123', kind='comments')

        comment = Comment.query.filter_by(comment_id='c1').first()
        assert comment.text == 'Edited text'
        assert comment.like_count == 7
        assert comment.sentiment == 'positive'

    def test_missing_upstream_rows_are_kept(self, services, uc123):
        services.coordinator.sync_channel('UC123')
        uc123.video_pages['UC123'] = [[make_video('v1', published_day=1)]]

        services.coordinator.sync_channel('UC123', kind='videos')

        assert Video.query.filter_by(channel_id='UC123').count() == 8

    def test_channel_credential_is_used(self, services, uc123):
        services.store.ensure_channel('UC123', credential_ref='brand-account')

        services.coordinator.sync_channel('UC123', kind='videos')

        assert uc123.credentials_used == ['brand-account']


class TestPartialSync:
    """Tests for failures part-way through a sync."""

    def test_page_two_of_three_fails(self, services, upstream):
        upstream.add_channel('UC123')
        upstream.video_pages['UC123'] = [
            [make_video('v1'), make_video('v2')],
            UpstreamUnavailable('videos unavailable after 4 attempts'),
            [make_video('v3')],
        ]

        result = services.coordinator.sync_channel('UC123', kind='videos')

        assert result.outcome == 'partial'
        assert result.resources['videos'].status == 'partial'
        assert result.resources['videos'].pages == 1
        assert result.retryable
        assert {v.video_id for v in Video.query.all()} == {'v1', 'v2'}
        # The third page is never requested
        assert ('videos', 'UC123', 2) not in upstream.calls

    def test_first_page_failure_is_failed_resource(self, services, upstream):
        upstream.add_channel('UC123')
        upstream.video_pages['UC123'] = [UpstreamUnavailable('down')]

        result = services.coordinator.sync_channel('UC123', kind='videos')

        assert result.resources['channel'].status == 'succeeded'
        assert result.resources['videos'].status == 'failed'
        assert result.outcome == 'partial'

    def test_unknown_channel_fails(self, services, upstream):
        result = services.coordinator.sync_channel('UCmissing')

        assert result.outcome == 'failed'
        assert result.error.kind == 'not_found'
        assert not result.retryable
        assert result.resources['videos'].status == 'skipped'

    def test_unknown_channel_leaves_no_row(self, services, upstream):
        result = services.coordinator.sync_channel('UCtypo0000')

        assert result.outcome == 'failed'
        assert Channel.query.filter_by(channel_id='UCtypo0000').first() is None

    def test_unreachable_channel_leaves_no_row(self, services, upstream):
        upstream.channels['UCdown'] = UpstreamUnavailable('down')

        result = services.coordinator.sync_channel('UCdown')

        assert result.outcome == 'failed'
        assert result.retryable
        assert Channel.query.count() == 0

    def test_first_sync_creates_channel_from_upstream(self, services, uc123):
        assert Channel.query.count() == 0

        result = services.coordinator.sync_channel('UC123', kind='videos')

        assert result.resources['channel'].inserted == 1
        channel = Channel.query.filter_by(channel_id='UC123').first()
        assert channel.title == 'Test Channel'
        assert channel.last_synced is not None

    def test_credential_rejected_fails_sync(self, services, upstream):
        upstream.channels['UC123'] = CredentialInvalid('rejected', credential_ref='default')

        result = services.coordinator.sync_channel('UC123')

        assert result.outcome == 'failed'
        assert result.error.kind == 'credential_invalid'

    def test_comment_failure_on_one_video_continues(self, services, uc123):
        uc123.comment_pages['v8'] = [UpstreamRejected('HTTP 403 forbidden', status_code=403)]

        result = services.coordinator.sync_channel('UC123')

        assert result.outcome == 'partial'
        assert result.error is None
        assert result.resources['comments'].status == 'partial'
        assert result.issues[0]['resource_id'] == 'v8'
        # v1 comes after v8 (newest first) and is still synced
        assert Comment.query.filter_by(video_id='v1').count() == 2


class TestCancellationAndDeadline:
    """Tests for cooperative cancellation and timeouts."""

    def test_cancel_before_start(self, services, uc123):
        event = threading.Event()
        event.set()

        result = services.coordinator.sync_channel('UC123', cancel_event=event)

        assert result.outcome == 'cancelled'
        assert Video.query.count() == 0

    def test_cancel_between_pages_keeps_progress(self, services, uc123):
        event = threading.Event()

        def on_page(resource):
            if resource == 'videos':
                event.set()

        result = services.coordinator.sync_channel('UC123', cancel_event=event, on_page=on_page)

        assert result.outcome == 'cancelled'
        assert result.resources['videos'].status == 'cancelled'
        assert Video.query.count() == 5

    def test_deadline_yields_timeout(self, services, uc123, clock):
        def on_page(resource):
            clock.advance(100)

        result = services.coordinator.sync_channel('UC123', deadline=50, on_page=on_page)

        assert result.outcome == 'timeout'
        assert Video.query.count() == 5


class TestInFlight:
    """Tests for the one-sync-per-channel guarantee."""

    def _start_blocked_sync(self, app, services, upstream, results):
        upstream.block = threading.Event()

        def run():
            with app.app_context():
                results.append(services.coordinator.sync_channel('UC123', kind='videos'))

        thread = threading.Thread(target=run)
        thread.start()
        assert upstream.block.wait(5)
        return thread

    def test_concurrent_enqueue_is_rejected(self, app, services, uc123):
        results = []
        thread = self._start_blocked_sync(app, services, uc123, results)

        with pytest.raises(SyncAlreadyInProgress):
            services.coordinator.sync_channel('UC123', kind='videos', mode='enqueue')

        uc123.release.set()
        thread.join(5)

        assert len(results) == 1
        assert uc123.calls.count(('channel', 'UC123')) == 1
        assert not services.coordinator.registry.is_running('UC123')

    def test_join_returns_running_result(self, app, services, uc123):
        results = []
        thread = self._start_blocked_sync(app, services, uc123, results)

        timer = threading.Timer(0.2, uc123.release.set)
        timer.start()
        joined = services.coordinator.sync_channel('UC123', kind='videos', mode='join')
        thread.join(5)

        assert joined is results[0]
        assert uc123.calls.count(('channel', 'UC123')) == 1

    def test_other_channels_are_not_blocked(self, app, services, uc123):
        uc123.add_channel('UC999')
        results = []
        thread = self._start_blocked_sync(app, services, uc123, results)

        # The block only applies while fetch_channel waits; lift it for the second sync
        uc123.block = None
        uc123.release.set()
        thread.join(5)
        other = services.coordinator.sync_channel('UC999', kind='videos')

        assert other.outcome == 'succeeded'
        assert len(results) == 1
