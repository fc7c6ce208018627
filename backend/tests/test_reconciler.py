"""
Reconciler and Store Tests
"""
from datetime import datetime

import pytest

from tubesync.extensions import db
from tubesync.models import Comment, Video
from tubesync.services.sync.errors import ReconcileError
from tubesync.services.sync.payloads import ChannelPayload
from tubesync.services.sync.reconciler import INSERT, NOOP, UPDATE, Reconciler
from tubesync.services.sync.store import SyncStore
from conftest import make_comment, make_video

SYNCED_AT = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
def store(app):
    return SyncStore()


@pytest.fixture
def reconciler():
    return Reconciler()


class TestReconciler:
    """Tests for the diff rules."""

    def test_new_videos_are_inserts(self, reconciler):
        ops = reconciler.reconcile_videos('UC123', [], [make_video('v1'), make_video('v2')])

        assert [op.action for op in ops] == [INSERT, INSERT]
        assert all(op.parent == 'UC123' for op in ops)

    def test_only_changed_fields_are_reported(self, reconciler):
        stored = Video(video_id='v1', channel_id='UC123', title='Old', view_count=5,
                       published_at=datetime(2024, 1, 1, 12, 0, 0), like_count=0, comment_count=0,
                       description='')
        ops = reconciler.reconcile_videos('UC123', [stored], [make_video('v1', title='New', views=5)])

        assert ops[0].action == UPDATE
        assert ops[0].changes == {'title': 'New'}

    def test_identical_video_is_noop(self, reconciler):
        stored = Video(video_id='v1', channel_id='UC123', title='Video v1', view_count=0,
                       published_at=datetime(2024, 1, 1, 12, 0, 0), like_count=0, comment_count=0,
                       description='', thumbnail_url=None)
        ops = reconciler.reconcile_videos('UC123', [stored], [make_video('v1')])

        assert ops[0].action == NOOP
        assert not ops[0].is_write

    def test_duplicates_keep_last_occurrence(self, reconciler):
        ops = reconciler.reconcile_videos('UC123', [], [
            make_video('v1', title='first'),
            make_video('v1', title='second'),
        ])

        assert len(ops) == 1
        assert ops[0].changes['title'] == 'second'

    def test_video_of_other_channel_is_rejected(self, reconciler):
        with pytest.raises(ReconcileError):
            reconciler.reconcile_videos('UC123', [], [make_video('v1', channel_id='UC999')])

    def test_missing_identifier_is_rejected(self, reconciler):
        with pytest.raises(ReconcileError):
            reconciler.reconcile_videos('UC123', [], [make_video('')])

    def test_channel_mismatch_is_rejected(self, reconciler, store):
        stored = store.ensure_channel('UC123')

        with pytest.raises(ReconcileError):
            reconciler.reconcile_channel(stored, ChannelPayload(channel_id='UC999'))

    def test_sentiment_is_not_diffed(self, reconciler):
        stored = Comment(comment_id='c1', video_id='v1', author='viewer', text='Nice video',
                         like_count=0, published_at=datetime(2024, 1, 2, 8, 30, 0), sentiment='negative')
        ops = reconciler.reconcile_comments('v1', [stored], [make_comment('c1', 'v1')])

        assert ops[0].action == NOOP


class TestSyncStore:
    """Tests for persisting upsert operations."""

    def test_apply_inserts_and_counts(self, store, reconciler):
        store.ensure_channel('UC123')
        ops = reconciler.reconcile_videos('UC123', [], [make_video('v1'), make_video('v2')])

        stats = store.apply(ops, synced_at=SYNCED_AT)

        assert stats.inserted == 2
        assert store.count('video', 'UC123') == 2
        assert Video.query.filter_by(video_id='v1').first().last_synced == SYNCED_AT

    def test_reapply_writes_nothing(self, store, reconciler):
        store.ensure_channel('UC123')
        store.apply(reconciler.reconcile_videos('UC123', [], [make_video('v1')]), synced_at=SYNCED_AT)

        stored = store.get_videos('UC123', ['v1'])
        ops = reconciler.reconcile_videos('UC123', stored, [make_video('v1')])
        stats = store.apply(ops, synced_at=datetime(2024, 3, 2))

        assert stats.writes == 0
        assert stats.unchanged == 1
        assert stored[0].last_synced == SYNCED_AT

    def test_update_keeps_sentiment(self, store, reconciler):
        store.apply(reconciler.reconcile_comments('v1', [], [make_comment('c1', 'v1')]), synced_at=SYNCED_AT)
        row = Comment.query.filter_by(comment_id='c1').first()
        row.sentiment = 'positive'
        db.session.commit()

        ops = reconciler.reconcile_comments('v1', [row], [make_comment('c1', 'v1', text='edited')])
        store.apply(ops, synced_at=SYNCED_AT)

        row = Comment.query.filter_by(comment_id='c1').first()
        assert row.text == 'edited'
        assert row.sentiment == 'positive'

    def test_same_comment_id_on_two_videos(self, store, reconciler):
        store.apply(reconciler.reconcile_comments('v1', [], [make_comment('c1', 'v1')]), synced_at=SYNCED_AT)
        store.apply(reconciler.reconcile_comments('v2', [], [make_comment('c1', 'v2')]), synced_at=SYNCED_AT)

        assert Comment.query.filter_by(comment_id='c1').count() == 2

    def test_ensure_channel_is_idempotent(self, store):
        first = store.ensure_channel('UC123', credential_ref='brand')
        second = store.ensure_channel('UC123')

        assert first.id == second.id
        assert second.credential_ref == 'brand'

    def test_list_video_ids_newest_first(self, store, reconciler):
        store.ensure_channel('UC123')
        videos = [make_video('old', published_day=1), make_video('new', published_day=9)]
        store.apply(reconciler.reconcile_videos('UC123', [], videos), synced_at=SYNCED_AT)

        assert store.list_video_ids('UC123') == ['new', 'old']
