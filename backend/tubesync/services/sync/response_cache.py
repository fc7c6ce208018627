"""
Response cache - short-TTL cache of raw upstream responses

Absorbs duplicate fetches inside one sync burst (a dashboard refresh and a
scheduled job asking for the same channel). It is never a source of truth:
callers that need fresh data pass force_refresh and skip the lookup.
"""
import hashlib
import json
import threading
from typing import Any, Dict, Iterable, Optional

from ...utils.logger import get_logger
from .clock import Clock, get_clock

logger = get_logger('response_cache')

DEFAULT_TTL = 3600.0


def make_signature(
    endpoint: str,
    resource_id: str,
    page_token: Optional[str] = None,
    fields: Optional[Iterable[str]] = None
) -> str:
    """Deterministic request signature.

    Requested fields are sorted so ``part=snippet,statistics`` and
    ``part=statistics,snippet`` share an entry.
    """
    canonical = json.dumps(
        {
            'endpoint': endpoint,
            'id': resource_id,
            'page': page_token or '',
            'fields': sorted(fields or []),
        },
        sort_keys=True,
        separators=(',', ':'),
    )
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class ResponseCache:
    """Thread-safe TTL cache.

    Expired entries are removed lazily, when a lookup finds them stale;
    there is no background sweeper.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL, clock: Optional[Clock] = None):
        self.default_ttl = default_ttl
        self._clock = clock or get_clock()
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()
        self._stats = {'hits': 0, 'misses': 0, 'evictions': 0}

    def get(self, signature: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(signature)
            if entry is None:
                self._stats['misses'] += 1
                return None
            expires_at, payload = entry
            if self._clock.monotonic() >= expires_at:
                del self._entries[signature]
                self._stats['misses'] += 1
                self._stats['evictions'] += 1
                return None
            self._stats['hits'] += 1
            return payload

    def put(self, signature: str, payload: Any, ttl: Optional[float] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            return
        with self._lock:
            self._entries[signature] = (self._clock.monotonic() + ttl, payload)

    def invalidate(self, signature: str) -> None:
        with self._lock:
            self._entries.pop(signature, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("[ResponseCache] Cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict:
        with self._lock:
            return {'size': len(self._entries), **self._stats}
