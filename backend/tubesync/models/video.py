"""
Video model
"""
from ..extensions import db
from .channel import _iso


class Video(db.Model):
    """Mirrored upstream video"""
    __tablename__ = 'videos'

    __table_args__ = (
        db.UniqueConstraint('channel_id', 'video_id', name='uq_videos_channel_video'),
        db.Index('ix_videos_channel_published', 'channel_id', 'published_at'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    video_id = db.Column(db.String(64), nullable=False, index=True)
    channel_id = db.Column(db.String(64), db.ForeignKey('channels.channel_id'), nullable=False, index=True)

    title = db.Column(db.String(256))
    description = db.Column(db.Text)
    published_at = db.Column(db.DateTime)
    thumbnail_url = db.Column(db.String(512))

    view_count = db.Column(db.BigInteger, default=0)
    like_count = db.Column(db.BigInteger, default=0)
    comment_count = db.Column(db.BigInteger, default=0)

    last_synced = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'video_id': self.video_id,
            'channel_id': self.channel_id,
            'title': self.title,
            'description': self.description,
            'published_at': _iso(self.published_at),
            'thumbnail_url': self.thumbnail_url,
            'view_count': self.view_count,
            'like_count': self.like_count,
            'comment_count': self.comment_count,
            'last_synced': _iso(self.last_synced),
        }

    def __repr__(self):
        return f'<Video {self.video_id}>'
