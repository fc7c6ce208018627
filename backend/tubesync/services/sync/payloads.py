"""
Upstream payloads

Plain data-transfer objects produced by a thin adapter over the upstream
JSON. Nothing past the client sees raw API shapes.
"""
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class _Payload:
    """Common helpers; KEY names the remote identifier field."""

    KEY = ''
    # Fields that identify/own the entity and are never diffed
    IDENTITY = ()

    @property
    def key(self) -> str:
        return getattr(self, self.KEY)

    def synced_fields(self) -> Dict[str, Any]:
        """Every field upstream is authoritative for."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in self.IDENTITY
        }


@dataclass(frozen=True)
class ChannelPayload(_Payload):
    KEY = 'channel_id'
    IDENTITY = ('channel_id',)

    channel_id: str
    title: str = ''
    description: str = ''
    thumbnail_url: Optional[str] = None
    subscriber_count: int = 0
    view_count: int = 0
    video_count: int = 0


@dataclass(frozen=True)
class VideoPayload(_Payload):
    KEY = 'video_id'
    IDENTITY = ('video_id', 'channel_id')

    video_id: str
    channel_id: str
    title: str = ''
    description: str = ''
    published_at: Optional[datetime] = None
    thumbnail_url: Optional[str] = None
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0


@dataclass(frozen=True)
class CommentPayload(_Payload):
    KEY = 'comment_id'
    IDENTITY = ('comment_id', 'video_id')

    comment_id: str
    video_id: str
    author: str = ''
    text: str = ''
    like_count: int = 0
    published_at: Optional[datetime] = None


@dataclass
class Page:
    """One page of a paginated listing."""
    items: List[Any] = field(default_factory=list)
    next_page_token: Optional[str] = None


# ==================== Adapter ====================

def parse_count(value) -> int:
    """Parse an upstream counter; statistics arrive as strings and may be hidden."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp into a naive UTC datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    # Upstream only has second precision; keeps comparisons against stored rows exact
    return parsed.replace(microsecond=0)


def _best_thumbnail(snippet: Dict) -> Optional[str]:
    thumbnails = snippet.get('thumbnails') or {}
    for size in ('high', 'medium', 'default'):
        url = (thumbnails.get(size) or {}).get('url')
        if url:
            return url
    return None


def channel_from_api(item: Dict) -> ChannelPayload:
    """Convert a channels.list item."""
    snippet = item.get('snippet') or {}
    statistics = item.get('statistics') or {}
    return ChannelPayload(
        channel_id=item.get('id') or '',
        title=snippet.get('title') or '',
        description=snippet.get('description') or '',
        thumbnail_url=_best_thumbnail(snippet),
        subscriber_count=parse_count(statistics.get('subscriberCount')),
        view_count=parse_count(statistics.get('viewCount')),
        video_count=parse_count(statistics.get('videoCount')),
    )


def video_from_api(item: Dict, channel_id: str = None) -> VideoPayload:
    """Convert a videos.list item (or a search result merged with statistics)."""
    snippet = item.get('snippet') or {}
    statistics = item.get('statistics') or {}
    raw_id = item.get('id')
    if isinstance(raw_id, dict):
        raw_id = raw_id.get('videoId')
    return VideoPayload(
        video_id=raw_id or '',
        channel_id=snippet.get('channelId') or channel_id or '',
        title=snippet.get('title') or '',
        description=snippet.get('description') or '',
        published_at=parse_timestamp(snippet.get('publishedAt')),
        thumbnail_url=_best_thumbnail(snippet),
        view_count=parse_count(statistics.get('viewCount')),
        like_count=parse_count(statistics.get('likeCount')),
        comment_count=parse_count(statistics.get('commentCount')),
    )


def comment_from_api(item: Dict, video_id: str = None) -> CommentPayload:
    """Convert a commentThreads.list item (top-level comment only)."""
    thread_snippet = item.get('snippet') or {}
    top = (thread_snippet.get('topLevelComment') or {})
    snippet = top.get('snippet') or {}
    return CommentPayload(
        comment_id=top.get('id') or item.get('id') or '',
        video_id=thread_snippet.get('videoId') or snippet.get('videoId') or video_id or '',
        author=snippet.get('authorDisplayName') or '',
        text=snippet.get('textOriginal') or snippet.get('textDisplay') or '',
        like_count=parse_count(snippet.get('likeCount')),
        published_at=parse_timestamp(snippet.get('publishedAt')),
    )
