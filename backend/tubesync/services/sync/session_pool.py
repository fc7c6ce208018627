"""
Request Session Pool - HTTP connection pooling for upstream calls

One requests.Session shared by every worker so repeated calls to the
upstream API reuse TCP/TLS connections.
"""
import threading
from typing import Dict

import requests
from requests.adapters import HTTPAdapter

from ...utils.logger import get_logger

logger = get_logger('session_pool')


class RequestSessionPool:
    """HTTP session pool (singleton).

    Adapter-level retries are off; RateLimitedClient owns retry and
    backoff and spends a quota token per attempt.

    Example:
        >>> pool = get_request_session_pool()
        >>> response = pool.get('https://www.googleapis.com/youtube/v3/channels', params={...})
        >>> pool.get_stats()
    """

    _instance = None
    _lock = threading.Lock()

    POOL_CONNECTIONS = 10  # Number of host pools to cache
    POOL_MAXSIZE = 20      # Max connections per host (>= worker pool size)

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=self.POOL_CONNECTIONS,
            pool_maxsize=self.POOL_MAXSIZE,
            max_retries=0,
            pool_block=False
        )
        self._session.mount('http://', adapter)
        self._session.mount('https://', adapter)

        self._stats = {'requests': 0, 'errors': 0}
        self._stats_lock = threading.Lock()

        self._initialized = True
        logger.info(
            f"[RequestSessionPool] Initialized: "
            f"pool_connections={self.POOL_CONNECTIONS}, pool_maxsize={self.POOL_MAXSIZE}"
        )

    def get(self, url: str, **kwargs) -> requests.Response:
        """Send a GET request through the pooled session.

        Raises:
            requests.RequestException: On transport failure
        """
        with self._stats_lock:
            self._stats['requests'] += 1

        try:
            return self._session.get(url, **kwargs)
        except requests.RequestException:
            with self._stats_lock:
                self._stats['errors'] += 1
            raise

    @property
    def session(self) -> requests.Session:
        return self._session

    def get_stats(self) -> Dict:
        with self._stats_lock:
            return self._stats.copy()

    def close(self) -> None:
        """Close all connections in the pool."""
        self._session.close()
        logger.info("[RequestSessionPool] Session pool closed")


_request_session_pool: RequestSessionPool = None


def get_request_session_pool() -> RequestSessionPool:
    """Return the global session pool."""
    global _request_session_pool
    if _request_session_pool is None:
        _request_session_pool = RequestSessionPool()
    return _request_session_pool
