"""
Comment model
"""
from ..extensions import db
from .channel import _iso


class Comment(db.Model):
    """Mirrored upstream top-level comment"""
    __tablename__ = 'comments'

    __table_args__ = (
        db.UniqueConstraint('video_id', 'comment_id', name='uq_comments_video_comment'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    comment_id = db.Column(db.String(128), nullable=False, index=True)
    video_id = db.Column(db.String(64), nullable=False, index=True)

    author = db.Column(db.String(256))
    text = db.Column(db.Text)
    like_count = db.Column(db.Integer, default=0)
    published_at = db.Column(db.DateTime)

    # Written by the downstream sentiment analysis, never by sync
    sentiment = db.Column(db.String(32))

    last_synced = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'comment_id': self.comment_id,
            'video_id': self.video_id,
            'author': self.author,
            'text': self.text,
            'like_count': self.like_count,
            'published_at': _iso(self.published_at),
            'sentiment': self.sentiment,
            'last_synced': _iso(self.last_synced),
        }

    def __repr__(self):
        return f'<Comment {self.comment_id}>'
