"""
Sync error taxonomy

The client raises these, the coordinator folds them into a SyncResult, and
only the job queue decides between retry and dead-lettering based on
``retryable``.
"""
from typing import Optional


class SyncError(Exception):
    """Base class of every typed sync failure."""

    kind = 'sync_error'
    retryable = False

    def __init__(self, message: str = '', **context):
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.context = context

    def to_dict(self):
        return {
            'kind': self.kind,
            'message': self.message,
            'retryable': self.retryable,
        }


class QuotaExceeded(SyncError):
    """No quota token became available in time, or upstream reported quota exhaustion."""
    kind = 'quota_exceeded'
    retryable = True


class UpstreamUnavailable(SyncError):
    """Transport failure that persisted through every client retry."""
    kind = 'upstream_unavailable'
    retryable = True

    def __init__(self, message: str = '', last_error: Optional[BaseException] = None, **context):
        super().__init__(message, **context)
        self.last_error = last_error


class CredentialInvalid(SyncError):
    """Upstream rejected the bearer credential; needs out-of-band re-authentication."""
    kind = 'credential_invalid'

    def __init__(self, message: str = '', credential_ref: Optional[str] = None, **context):
        super().__init__(message, **context)
        self.credential_ref = credential_ref


class ResourceNotFound(SyncError):
    """The requested channel or video does not exist upstream."""
    kind = 'not_found'


class UpstreamRejected(SyncError):
    """Any other 4xx rejection; retrying the same request will not help."""
    kind = 'upstream_rejected'

    def __init__(self, message: str = '', status_code: Optional[int] = None, **context):
        super().__init__(message, **context)
        self.status_code = status_code


class SyncAlreadyInProgress(SyncError):
    """A sync for the channel is already running and the caller chose not to join it."""
    kind = 'sync_in_progress'

    def __init__(self, channel_id: str):
        super().__init__(f'Sync already in progress for channel {channel_id}')
        self.channel_id = channel_id


class SyncCancelled(SyncError):
    """Cooperative cancellation was observed between pages or resources."""
    kind = 'cancelled'


class SyncTimeout(SyncError):
    """The sync deadline passed; observed at the same points as cancellation."""
    kind = 'timeout'


class ReconcileError(SyncError):
    """Fetched data cannot be matched to the entity being reconciled."""
    kind = 'reconcile_error'


class StoreError(SyncError):
    """A write to the local store failed and was rolled back."""
    kind = 'store_error'
    retryable = True


class InternalSyncError(SyncError):
    """An unexpected exception escaped a sync step."""
    kind = 'internal_error'
    retryable = True
