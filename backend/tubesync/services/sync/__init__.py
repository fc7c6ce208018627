"""
Sync pipeline modules

Exports the building blocks of a channel sync for direct access.
"""
from .backoff import BackoffPolicy
from .client import PagedFetch, RateLimitedClient
from .clock import Clock, FakeClock, get_clock
from .coordinator import InFlightRegistry, SyncCoordinator
from .errors import (
    CredentialInvalid,
    QuotaExceeded,
    ResourceNotFound,
    StoreError,
    SyncAlreadyInProgress,
    SyncCancelled,
    SyncError,
    SyncTimeout,
    UpstreamRejected,
    UpstreamUnavailable,
)
from .payloads import ChannelPayload, CommentPayload, Page, VideoPayload
from .quota import QuotaRegistry, TokenBucket
from .reconciler import Reconciler, UpsertOp
from .response_cache import ResponseCache, make_signature
from .result import SyncResult
from .session_pool import RequestSessionPool, get_request_session_pool
from .store import SyncStore, WriteStats

__all__ = [
    'BackoffPolicy',
    'PagedFetch',
    'RateLimitedClient',
    'Clock',
    'FakeClock',
    'get_clock',
    'InFlightRegistry',
    'SyncCoordinator',
    'CredentialInvalid',
    'QuotaExceeded',
    'ResourceNotFound',
    'StoreError',
    'SyncAlreadyInProgress',
    'SyncCancelled',
    'SyncError',
    'SyncTimeout',
    'UpstreamRejected',
    'UpstreamUnavailable',
    'ChannelPayload',
    'CommentPayload',
    'Page',
    'VideoPayload',
    'QuotaRegistry',
    'TokenBucket',
    'Reconciler',
    'UpsertOp',
    'ResponseCache',
    'make_signature',
    'SyncResult',
    'RequestSessionPool',
    'get_request_session_pool',
    'SyncStore',
    'WriteStats',
]
