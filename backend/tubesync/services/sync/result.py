"""
Sync result collection

Tracks what happened to each sub-resource of a channel sync so a partial
sync is an observable outcome instead of a bare failure.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import SyncError
from .store import WriteStats

# Sub-resource statuses
SUCCEEDED = 'succeeded'
PARTIAL = 'partial'
FAILED = 'failed'
SKIPPED = 'skipped'
CANCELLED = 'cancelled'
PENDING = 'pending'

# Overall outcomes
OUTCOME_SUCCEEDED = 'succeeded'
OUTCOME_PARTIAL = 'partial'
OUTCOME_FAILED = 'failed'
OUTCOME_CANCELLED = 'cancelled'
OUTCOME_TIMEOUT = 'timeout'

RESOURCES = ('channel', 'videos', 'comments')


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + 'Z' if value else None


@dataclass
class ResourceStatus:
    status: str = PENDING
    pages: int = 0
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'status': self.status,
            'pages': self.pages,
            'fetched': self.fetched,
            'inserted': self.inserted,
            'updated': self.updated,
            'unchanged': self.unchanged,
        }
        if self.error:
            data['error'] = self.error
        return data


@dataclass
class SyncResult:
    """Outcome of one sync_channel call.

    Example:
        >>> result = SyncResult('UC123', 'full', started_at=clock.now())
        >>> result.record_page('videos', fetched=50, stats=write_stats)
        >>> result.fail('videos', error)
        >>> result.finalize(clock.now())
        >>> result.outcome
        'partial'
    """

    # Issue types
    TYPE_FETCH_FAILED = 'fetch_failed'
    TYPE_NOT_FOUND = 'not_found'
    TYPE_REJECTED = 'rejected'

    MAX_ISSUES = 200
    MAX_MESSAGE_LENGTH = 500

    channel_id: str
    kind: str
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outcome: Optional[str] = None
    error: Optional[SyncError] = None
    resources: Dict[str, ResourceStatus] = field(default_factory=lambda: {r: ResourceStatus() for r in RESOURCES})
    issues: List[Dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    # ==================== Recording ====================

    def record_page(self, resource: str, fetched: int, stats: WriteStats) -> None:
        with self._lock:
            status = self.resources[resource]
            status.pages += 1
            status.fetched += fetched
            status.inserted += stats.inserted
            status.updated += stats.updated
            status.unchanged += stats.unchanged

    def complete(self, resource: str) -> None:
        with self._lock:
            status = self.resources[resource]
            # A resource that logged issues along the way stays partial
            if status.status != PARTIAL:
                status.status = SUCCEEDED

    def mark_partial(self, resource: str) -> None:
        with self._lock:
            self.resources[resource].status = PARTIAL

    def fail(self, resource: str, error: SyncError) -> None:
        """Record the terminal error of a resource step."""
        with self._lock:
            status = self.resources[resource]
            status.status = PARTIAL if status.pages > 0 else FAILED
            status.error = error.message[:self.MAX_MESSAGE_LENGTH]
            self.error = error

    def interrupt(self, resource: str, error: SyncError) -> None:
        """Cancellation or timeout observed while ``resource`` was in progress."""
        with self._lock:
            status = self.resources[resource]
            status.status = CANCELLED
            status.error = error.message[:self.MAX_MESSAGE_LENGTH]
            self.error = error

    def skip(self, resource: str) -> None:
        with self._lock:
            if self.resources[resource].status == PENDING:
                self.resources[resource].status = SKIPPED

    def add_issue(self, issue_type: str, message: str, resource_id: Optional[str] = None) -> None:
        with self._lock:
            if len(self.issues) >= self.MAX_ISSUES:
                return
            issue = {'type': issue_type, 'message': message[:self.MAX_MESSAGE_LENGTH]}
            if resource_id:
                issue['resource_id'] = resource_id
            self.issues.append(issue)

    def finalize(self, finished_at: datetime) -> 'SyncResult':
        """Skip untouched resources and derive the overall outcome."""
        for resource in RESOURCES:
            self.skip(resource)
        with self._lock:
            self.finished_at = finished_at
            statuses = [s.status for s in self.resources.values()]
            if self.error is not None and self.error.kind == 'timeout':
                self.outcome = OUTCOME_TIMEOUT
            elif self.error is not None and self.error.kind == 'cancelled':
                self.outcome = OUTCOME_CANCELLED
            elif self.resources['channel'].status == FAILED:
                self.outcome = OUTCOME_FAILED
            elif self.error is not None or PARTIAL in statuses or FAILED in statuses:
                self.outcome = OUTCOME_PARTIAL
            else:
                self.outcome = OUTCOME_SUCCEEDED
        return self

    # ==================== Reading ====================

    @property
    def writes(self) -> int:
        return sum(s.inserted + s.updated for s in self.resources.values())

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data = {
                'channel_id': self.channel_id,
                'kind': self.kind,
                'outcome': self.outcome,
                'started_at': _iso(self.started_at),
                'finished_at': _iso(self.finished_at),
                'resources': {name: status.to_dict() for name, status in self.resources.items()},
                'issues_count': len(self.issues),
            }
            if self.error is not None:
                data['error'] = self.error.to_dict()
            if self.issues:
                data['issues'] = list(self.issues)
            return data
