"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests.
"""
import os
import sys
import threading
from datetime import datetime

import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tubesync import create_app
from tubesync.extensions import db
from tubesync.config import TestingConfig
from tubesync.services import init_services
from tubesync.services.sync.clock import FakeClock
from tubesync.services.sync.errors import ResourceNotFound
from tubesync.services.sync.payloads import ChannelPayload, CommentPayload, Page, VideoPayload


class FakeUpstream:
    """Scripted stand-in for RateLimitedClient.

    ``video_pages[channel]`` and ``comment_pages[video]`` are lists of pages;
    a page is a list of payloads, or an exception raised when that page is
    requested.
    """

    def __init__(self):
        self.channels = {}
        self.video_pages = {}
        self.comment_pages = {}
        self.calls = []
        self.credentials_used = []
        # Set to make fetch_channel block until ``release`` is set
        self.block = None
        self.release = threading.Event()

    def factory(self, credential_ref):
        self.credentials_used.append(credential_ref)
        return self

    def add_channel(self, channel_id, title='Channel', **kwargs):
        self.channels[channel_id] = ChannelPayload(channel_id=channel_id, title=title, **kwargs)

    def fetch_channel(self, remote_id, force_refresh=False):
        self.calls.append(('channel', remote_id))
        if self.block is not None:
            self.block.set()
            self.release.wait(5)
        if isinstance(self.channels.get(remote_id), Exception):
            raise self.channels[remote_id]
        if remote_id not in self.channels:
            raise ResourceNotFound(f'Channel {remote_id} not found upstream')
        return self.channels[remote_id]

    def iter_video_pages(self, channel_remote_id, force_refresh=False):
        return self._pages('videos', channel_remote_id, self.video_pages.get(channel_remote_id, []))

    def iter_comment_pages(self, video_remote_id, force_refresh=False):
        return self._pages('comments', video_remote_id, self.comment_pages.get(video_remote_id, []))

    def _pages(self, resource, resource_id, pages):
        for index, page in enumerate(pages):
            self.calls.append((resource, resource_id, index))
            if isinstance(page, Exception):
                raise page
            next_token = f'page-{index + 1}' if index + 1 < len(pages) else None
            yield Page(items=list(page), next_page_token=next_token)


def make_video(video_id, channel_id='UC123', title=None, views=0, published_day=1):
    return VideoPayload(
        video_id=video_id,
        channel_id=channel_id,
        title=title or f'Video {video_id}',
        published_at=datetime(2024, 1, published_day, 12, 0, 0),
        view_count=views,
    )


def make_comment(comment_id, video_id, text='Nice video', likes=0):
    return CommentPayload(
        comment_id=comment_id,
        video_id=video_id,
        author='viewer',
        text=text,
        like_count=likes,
        published_at=datetime(2024, 1, 2, 8, 30, 0),
    )


@pytest.fixture
def app():
    """Create application for testing (fresh in-memory database per test)."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def clock():
    return FakeClock(start=datetime(2024, 3, 1, 12, 0, 0))


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def services(app, clock, upstream):
    """Sync services wired to the fake upstream and fake clock."""
    return init_services(app, clock=clock, client_factory=upstream.factory)


@pytest.fixture
def uc123(upstream):
    """Channel UC123 with two video pages (5 + 3) and comments on one video."""
    upstream.add_channel('UC123', title='Test Channel', subscriber_count=1000, video_count=8)
    upstream.video_pages['UC123'] = [
        [make_video(f'v{i}', published_day=i) for i in range(1, 6)],
        [make_video(f'v{i}', published_day=i) for i in range(6, 9)],
    ]
    upstream.comment_pages['v1'] = [
        [make_comment('c1', 'v1'), make_comment('c2', 'v1')],
    ]
    return upstream
