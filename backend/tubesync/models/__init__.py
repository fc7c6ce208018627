"""
Database models
"""
from .channel import Channel
from .video import Video
from .comment import Comment
from .sync_job import SyncJob, JobState
from .credential import Credential

__all__ = ['Channel', 'Video', 'Comment', 'SyncJob', 'JobState', 'Credential']
