"""
Sync store - persistence of channels, videos and comments

Thin layer over Flask-SQLAlchemy. Every apply() call is one transaction,
so each page a sync persists stays committed even if a later page fails.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ...extensions import db
from ...models import Channel, Comment, Video
from ...utils.logger import get_logger
from .errors import StoreError
from .reconciler import INSERT, UPDATE, UpsertOp

logger = get_logger('store')

_MODELS = {
    'channel': (Channel, 'channel_id'),
    'video': (Video, 'video_id'),
    'comment': (Comment, 'comment_id'),
}


@dataclass
class WriteStats:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    def add(self, other: 'WriteStats') -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged

    @property
    def writes(self) -> int:
        return self.inserted + self.updated


class SyncStore:
    """Store for the mirrored entities."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ==================== Reads ====================

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.session.query(Channel).filter_by(channel_id=channel_id).first()

    def ensure_channel(self, channel_id: str, credential_ref: Optional[str] = None,
                       sync_interval: Optional[float] = None) -> Channel:
        """Return the channel row for schedule registration, creating it when missing."""
        channel = self.get_channel(channel_id)
        try:
            if channel is None:
                channel = Channel(channel_id=channel_id, credential_ref=credential_ref,
                                  sync_interval=sync_interval)
                self.session.add(channel)
            else:
                if credential_ref is not None:
                    channel.credential_ref = credential_ref
                if sync_interval is not None:
                    channel.sync_interval = sync_interval
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f'Failed to save channel {channel_id}: {e}') from e
        return channel

    def set_schedule(self, channel_id: str, sync_interval: Optional[float]) -> Optional[Channel]:
        channel = self.get_channel(channel_id)
        if channel is None:
            return None
        try:
            channel.sync_interval = sync_interval
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f'Failed to update schedule of {channel_id}: {e}') from e
        return channel

    def scheduled_channels(self) -> List[Channel]:
        return self.session.query(Channel).filter(Channel.sync_interval.isnot(None)).all()

    def get_videos(self, channel_id: str, video_ids: Optional[Iterable[str]] = None) -> List[Video]:
        query = self.session.query(Video).filter_by(channel_id=channel_id)
        if video_ids is not None:
            video_ids = list(video_ids)
            if not video_ids:
                return []
            query = query.filter(Video.video_id.in_(video_ids))
        return query.all()

    def list_video_ids(self, channel_id: str) -> List[str]:
        rows = (
            self.session.query(Video.video_id)
            .filter_by(channel_id=channel_id)
            .order_by(Video.published_at.desc(), Video.id)
            .all()
        )
        return [row[0] for row in rows]

    def get_comments(self, video_id: str, comment_ids: Optional[Iterable[str]] = None) -> List[Comment]:
        query = self.session.query(Comment).filter_by(video_id=video_id)
        if comment_ids is not None:
            comment_ids = list(comment_ids)
            if not comment_ids:
                return []
            query = query.filter(Comment.comment_id.in_(comment_ids))
        return query.all()

    def count(self, entity: str, parent: Optional[str] = None) -> int:
        model, _ = _MODELS[entity]
        query = self.session.query(model)
        if parent is not None:
            if entity == 'video':
                query = query.filter_by(channel_id=parent)
            elif entity == 'comment':
                query = query.filter_by(video_id=parent)
        return query.count()

    # ==================== Writes ====================

    def apply(self, ops: Iterable[UpsertOp], synced_at: datetime) -> WriteStats:
        """Apply upsert operations in a single transaction.

        Only inserted or changed rows get ``last_synced`` bumped, so
        re-applying an unchanged fetch writes nothing.
        """
        ops = list(ops)
        stats = WriteStats()
        if not ops:
            return stats

        try:
            existing = self._load_existing(ops)
            for op in ops:
                model, key_attr = _MODELS[op.entity]
                if op.action == INSERT:
                    row = existing.get((op.entity, op.key))
                    if row is None:
                        row = model(**{key_attr: op.key})
                        self._set_parent(row, op)
                        self.session.add(row)
                    for name, value in op.changes.items():
                        setattr(row, name, value)
                    row.last_synced = synced_at
                    stats.inserted += 1
                elif op.action == UPDATE:
                    row = existing.get((op.entity, op.key))
                    if row is None:
                        raise StoreError(f'{op.entity} {op.key} vanished before update')
                    for name, value in op.changes.items():
                        setattr(row, name, value)
                    row.last_synced = synced_at
                    stats.updated += 1
                else:
                    stats.unchanged += 1
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"[Store] Transaction rolled back: {e}")
            raise StoreError(f'Failed to persist {len(ops)} operations: {e}') from e
        except StoreError:
            self.session.rollback()
            raise

        return stats

    def mark_channel_synced(self, channel_id: str, synced_at: datetime) -> None:
        channel = self.get_channel(channel_id)
        if channel is None:
            return
        try:
            channel.last_synced = synced_at
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise StoreError(f'Failed to stamp channel {channel_id}: {e}') from e

    def _load_existing(self, ops: List[UpsertOp]) -> dict:
        """Fetch every row an op touches, keyed by (entity, remote id)."""
        existing = {}
        wanted = {}
        for op in ops:
            if op.is_write:
                wanted.setdefault((op.entity, op.parent), set()).add(op.key)

        for (entity, parent), keys in wanted.items():
            model, key_attr = _MODELS[entity]
            query = self.session.query(model).filter(getattr(model, key_attr).in_(list(keys)))
            if entity == 'video' and parent is not None:
                query = query.filter(Video.channel_id == parent)
            elif entity == 'comment' and parent is not None:
                query = query.filter(Comment.video_id == parent)
            for row in query.all():
                existing[(entity, getattr(row, key_attr))] = row
        return existing

    @staticmethod
    def _set_parent(row, op: UpsertOp) -> None:
        if op.entity == 'video':
            row.channel_id = op.parent or op.payload.channel_id
        elif op.entity == 'comment':
            row.video_id = op.parent or op.payload.video_id
