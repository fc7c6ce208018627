"""
Service Layer

SyncServices wires the sync pipeline together from the Flask config and is
stored on the app as ``app.extensions['tubesync']``.
"""
from typing import Callable, Optional

from flask import current_app

from .credentials import CredentialProvider
from .job_queue import JobQueue
from .scheduler import Scheduler
from .sync.client import DEFAULT_BASE_URL
from .sync import (
    BackoffPolicy,
    Clock,
    InFlightRegistry,
    QuotaRegistry,
    RateLimitedClient,
    Reconciler,
    ResponseCache,
    SyncCoordinator,
    SyncStore,
    get_clock,
)

EXTENSION_KEY = 'tubesync'


class SyncServices:
    """Process-wide sync components sharing one quota registry and cache."""

    def __init__(self, config, app=None, clock: Optional[Clock] = None,
                 client_factory: Optional[Callable[[str], object]] = None,
                 credentials: Optional[CredentialProvider] = None):
        self.config = config
        self.clock = clock or get_clock()
        self.credentials = credentials or CredentialProvider(config.get('YOUTUBE_API_TOKEN', ''))
        self.quotas = QuotaRegistry(
            capacity=config.get('QUOTA_CAPACITY', 10),
            refill_per_second=config.get('QUOTA_REFILL_PER_SECOND', 2.0),
            clock=self.clock,
        )
        self.cache = ResponseCache(default_ttl=config.get('CACHE_TTL_SECONDS', 3600), clock=self.clock)
        self.client_backoff = BackoffPolicy(
            base=config.get('CLIENT_BACKOFF_BASE', 1.0),
            cap=config.get('CLIENT_BACKOFF_CAP', 30.0),
            jitter=config.get('BACKOFF_JITTER', 0.2),
        )
        self.store = SyncStore()
        self.coordinator = SyncCoordinator(
            client_factory or self.client_for,
            store=self.store,
            reconciler=Reconciler(),
            registry=InFlightRegistry(),
            clock=self.clock,
            default_credential=config.get('DEFAULT_CREDENTIAL', 'default'),
        )
        self.queue = JobQueue(
            self.coordinator,
            app=app,
            clock=self.clock,
            backoff=BackoffPolicy(
                base=config.get('JOB_BACKOFF_BASE', 30.0),
                cap=config.get('JOB_BACKOFF_CAP', 1800.0),
                jitter=config.get('BACKOFF_JITTER', 0.2),
            ),
            max_attempts=config.get('JOB_MAX_ATTEMPTS', 3),
            pool_size=config.get('WORKER_POOL_SIZE', 3),
            poll_interval=config.get('WORKER_POLL_INTERVAL', 1.0),
            sync_deadline=config.get('SYNC_DEADLINE_SECONDS'),
        )
        self.scheduler = Scheduler(
            self.queue,
            store=self.store,
            app=app,
            clock=self.clock,
            default_interval=config.get('PERIODIC_SYNC_INTERVAL', 21600),
            tick_seconds=config.get('SCHEDULER_TICK_SECONDS', 60),
        )

    def client_for(self, credential_ref: str) -> RateLimitedClient:
        """Build an upstream client spending the given credential's quota."""
        return RateLimitedClient(
            self.credentials,
            credential_ref,
            self.quotas.get(credential_ref),
            cache=self.cache,
            backoff=self.client_backoff,
            max_attempts=self.config.get('CLIENT_MAX_ATTEMPTS', 4),
            quota_timeout=self.config.get('QUOTA_WAIT_TIMEOUT'),
            base_url=self.config.get('YOUTUBE_API_BASE_URL', DEFAULT_BASE_URL),
            http_timeout=self.config.get('HTTP_TIMEOUT', 15.0),
            cache_ttl=self.config.get('CACHE_TTL_SECONDS'),
            clock=self.clock,
        )

    def start(self) -> None:
        self.queue.start()
        self.scheduler.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.scheduler.stop(timeout)
        self.queue.stop(timeout)

    def get_stats(self) -> dict:
        return {
            'quota': self.quotas.get_stats(),
            'cache': self.cache.get_stats(),
            'in_flight': self.coordinator.registry.running(),
            'workers_running': self.queue.is_running,
            'scheduler_running': self.scheduler.is_running,
        }


def init_services(app, **kwargs) -> SyncServices:
    services = SyncServices(app.config, app=app, **kwargs)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> SyncServices:
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    'SyncServices',
    'init_services',
    'get_services',
    'CredentialProvider',
    'JobQueue',
    'Scheduler',
]
