"""
Sync job model
"""
import json
from datetime import datetime
from ..extensions import db
from .channel import _iso


class JobState:
    """SyncJob states"""
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    RETRYING = 'retrying'
    DEAD = 'dead'
    CANCELLED = 'cancelled'

    # States that still occupy the queue for de-duplication
    ACTIVE = (PENDING, RETRYING, RUNNING)
    TERMINAL = (SUCCEEDED, FAILED, DEAD, CANCELLED)


class SyncJob(db.Model):
    """A queued "sync channel X" request"""
    __tablename__ = 'sync_jobs'

    __table_args__ = (
        db.Index('ix_sync_jobs_state_scheduled', 'state', 'scheduled_at'),
        db.Index('ix_sync_jobs_channel_kind_state', 'channel_id', 'kind', 'state'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    channel_id = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), nullable=False, default='full')
    state = db.Column(db.String(16), nullable=False, default=JobState.PENDING)
    attempt = db.Column(db.Integer, nullable=False, default=0)
    max_attempts = db.Column(db.Integer, nullable=False, default=3)
    force_refresh = db.Column(db.Boolean, nullable=False, default=False)

    scheduled_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    started_at = db.Column(db.DateTime)
    finished_at = db.Column(db.DateTime)
    heartbeat = db.Column(db.DateTime)

    last_error = db.Column(db.Text)
    # JSON of the last SyncResult
    result = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in JobState.TERMINAL

    def get_result(self):
        if not self.result:
            return None
        try:
            return json.loads(self.result)
        except (json.JSONDecodeError, TypeError):
            return None

    def to_dict(self, include_result=False):
        data = {
            'jobId': self.id,
            'channel_id': self.channel_id,
            'kind': self.kind,
            'state': self.state,
            'attempt': self.attempt,
            'max_attempts': self.max_attempts,
            'force_refresh': self.force_refresh,
            'scheduled_at': _iso(self.scheduled_at),
            'started_at': _iso(self.started_at),
            'finished_at': _iso(self.finished_at),
            'created_at': _iso(self.created_at),
        }
        if self.last_error:
            data['lastError'] = self.last_error
        if include_result:
            data['result'] = self.get_result()
        return data

    def __repr__(self):
        return f'<SyncJob {self.id} {self.channel_id}/{self.kind} {self.state}>'
