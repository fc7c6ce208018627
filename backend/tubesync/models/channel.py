"""
Channel model
"""
from datetime import datetime
from ..extensions import db


def _iso(value):
    return value.isoformat() + 'Z' if value else None


class Channel(db.Model):
    """Mirrored upstream channel"""
    __tablename__ = 'channels'

    # Internal key, never sent upstream
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    channel_id = db.Column(db.String(64), unique=True, nullable=False, index=True)

    title = db.Column(db.String(256))
    description = db.Column(db.Text)
    thumbnail_url = db.Column(db.String(512))

    # Upstream statistics, may go down as well as up
    subscriber_count = db.Column(db.BigInteger, default=0)
    view_count = db.Column(db.BigInteger, default=0)
    video_count = db.Column(db.Integer, default=0)

    last_synced = db.Column(db.DateTime)
    credential_ref = db.Column(db.String(64))

    # Recurring full-sync interval in seconds; NULL means not scheduled
    sync_interval = db.Column(db.Float)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    videos = db.relationship('Video', backref='channel', lazy='dynamic')

    def to_dict(self):
        return {
            'channel_id': self.channel_id,
            'title': self.title,
            'description': self.description,
            'thumbnail_url': self.thumbnail_url,
            'subscriber_count': self.subscriber_count,
            'view_count': self.view_count,
            'video_count': self.video_count,
            'last_synced': _iso(self.last_synced),
            'credential_ref': self.credential_ref,
            'sync_interval': self.sync_interval,
            'created_at': _iso(self.created_at),
        }

    def __repr__(self):
        return f'<Channel {self.channel_id}>'
