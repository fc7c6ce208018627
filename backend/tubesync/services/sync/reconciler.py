"""
Reconciler - diff fetched upstream entities against stored rows

Policy:
- upstream is authoritative for every field it returns, replaced field by
  field only when the value differs;
- fields upstream does not return (sentiment, schedule, credential) are
  never touched;
- stored rows missing from a fetch are left alone, since a truncated
  listing is not proof of deletion;
- matching is by remote identifier only.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import ReconcileError
from .payloads import ChannelPayload, CommentPayload, VideoPayload, _Payload

INSERT = 'insert'
UPDATE = 'update'
NOOP = 'noop'


@dataclass
class UpsertOp:
    """A single write the store has to apply."""
    entity: str
    key: str
    action: str
    payload: _Payload
    changes: Dict[str, Any] = field(default_factory=dict)
    # Owning entity's remote id (channel for videos, video for comments)
    parent: Optional[str] = None

    @property
    def is_write(self) -> bool:
        return self.action != NOOP


def _diff(stored, fetched: _Payload) -> Dict[str, Any]:
    changes = {}
    for name, value in fetched.synced_fields().items():
        if getattr(stored, name, None) != value:
            changes[name] = value
    return changes


def _reconcile_one(entity: str, stored, fetched: _Payload, parent: Optional[str] = None) -> UpsertOp:
    if not fetched.key:
        raise ReconcileError(f'Fetched {entity} has no remote identifier')
    if stored is None:
        return UpsertOp(entity, fetched.key, INSERT, fetched, fetched.synced_fields(), parent)
    changes = _diff(stored, fetched)
    return UpsertOp(entity, fetched.key, UPDATE if changes else NOOP, fetched, changes, parent)


def _dedupe(fetched: Iterable[_Payload]) -> List[_Payload]:
    """Keep the last occurrence of each remote id, in first-seen order."""
    by_key: Dict[str, _Payload] = {}
    for item in fetched:
        by_key[item.key] = item
    return list(by_key.values())


class Reconciler:
    """Stateless diff engine; one instance can be shared across workers."""

    def reconcile_channel(self, stored, fetched: ChannelPayload) -> UpsertOp:
        if stored is not None and stored.channel_id != fetched.channel_id:
            raise ReconcileError(
                f'Fetched channel {fetched.channel_id} does not match stored {stored.channel_id}'
            )
        return _reconcile_one('channel', stored, fetched)

    def reconcile_videos(self, channel_id: str, stored: Iterable, fetched: Iterable[VideoPayload]) -> List[UpsertOp]:
        stored_by_id = {row.video_id: row for row in stored}
        ops = []
        for video in _dedupe(fetched):
            if video.channel_id != channel_id:
                raise ReconcileError(
                    f'Video {video.video_id} belongs to {video.channel_id}, not {channel_id}'
                )
            ops.append(_reconcile_one('video', stored_by_id.get(video.video_id), video, channel_id))
        return ops

    def reconcile_comments(self, video_id: str, stored: Iterable, fetched: Iterable[CommentPayload]) -> List[UpsertOp]:
        stored_by_id = {row.comment_id: row for row in stored}
        ops = []
        for comment in _dedupe(fetched):
            if comment.video_id != video_id:
                raise ReconcileError(
                    f'Comment {comment.comment_id} belongs to {comment.video_id}, not {video_id}'
                )
            ops.append(_reconcile_one('comment', stored_by_id.get(comment.comment_id), comment, video_id))
        return ops
