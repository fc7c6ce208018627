"""
Rate-limited upstream client

Wraps the three upstream reads the sync pipeline needs (channel lookup,
channel video listing, video comment listing) with:

- a per-credential token bucket (one token per HTTP request),
- the short-TTL response cache,
- exponential backoff on transport failures,
- typed errors for everything else.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import requests

from ...utils.logger import get_logger
from .backoff import BackoffPolicy
from .clock import Clock, get_clock
from .errors import (
    CredentialInvalid,
    QuotaExceeded,
    ResourceNotFound,
    SyncError,
    UpstreamRejected,
    UpstreamUnavailable,
)
from .payloads import (
    ChannelPayload,
    CommentPayload,
    Page,
    VideoPayload,
    channel_from_api,
    comment_from_api,
    video_from_api,
)
from .quota import TokenBucket
from .response_cache import ResponseCache, make_signature
from .session_pool import get_request_session_pool

logger = get_logger('client')

DEFAULT_BASE_URL = 'https://www.googleapis.com/youtube/v3'

# 403 reasons that mean provider-side quota, not a bad credential
QUOTA_REASONS = frozenset({'quotaExceeded', 'rateLimitExceeded', 'dailyLimitExceeded', 'userRateLimitExceeded'})
# 403 reasons about the resource rather than the credential
RESOURCE_REASONS = frozenset({'commentsDisabled', 'forbidden', 'channelClosed', 'channelSuspended'})

CHANNEL_PARTS = ('snippet', 'statistics')
VIDEO_PARTS = ('snippet', 'statistics')
SEARCH_PARTS = ('snippet',)
COMMENT_PARTS = ('snippet',)

VIDEO_PAGE_SIZE = 50
COMMENT_PAGE_SIZE = 100


@dataclass
class PagedFetch:
    """Result of draining a paginated listing.

    ``items`` holds every page fetched before ``error`` (if any) occurred.
    """
    items: List[Any] = field(default_factory=list)
    pages: int = 0
    error: Optional[SyncError] = None


class _TransientError(Exception):
    """Internal marker for a retryable transport-level failure."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


def _error_reason(response) -> str:
    """Extract the upstream error reason from a JSON error body."""
    try:
        body = response.json()
    except ValueError:
        return ''
    error = (body or {}).get('error') or {}
    errors = error.get('errors') or []
    if errors and isinstance(errors[0], dict) and errors[0].get('reason'):
        return errors[0]['reason']
    return error.get('status') or ''


class RateLimitedClient:
    """Upstream API client bound to one credential.

    Example:
        >>> client = RateLimitedClient(credentials, 'default', bucket, cache=cache)
        >>> channel = client.fetch_channel('UC123')
        >>> videos, next_token = client.fetch_videos('UC123')
        >>> fetched = client.fetch_all_comments('vid1')
    """

    def __init__(
        self,
        credentials,
        credential_ref: str,
        bucket: TokenBucket,
        cache: Optional[ResponseCache] = None,
        backoff: Optional[BackoffPolicy] = None,
        max_attempts: int = 4,
        quota_timeout: Optional[float] = None,
        base_url: str = DEFAULT_BASE_URL,
        http_timeout: float = 15.0,
        cache_ttl: Optional[float] = None,
        session=None,
        clock: Optional[Clock] = None
    ):
        """
        Args:
            credentials: Provider with get_token(ref) and invalidate(ref, message)
            credential_ref: Credential this client spends quota for
            bucket: Token bucket of that credential
            cache: Optional response cache
            backoff: Delay policy between transport retries
            max_attempts: Attempts per request before UpstreamUnavailable
            quota_timeout: Longest wait for a quota token per request
            base_url: Upstream API root
            http_timeout: Per-request socket timeout
            cache_ttl: TTL for entries written by this client
            session: Object with a requests-style get(); defaults to the shared pool
            clock: Time source for backoff sleeps
        """
        self.credentials = credentials
        self.credential_ref = credential_ref
        self.bucket = bucket
        self.cache = cache
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max(1, max_attempts)
        self.quota_timeout = quota_timeout
        self.base_url = base_url.rstrip('/')
        self.http_timeout = http_timeout
        self.cache_ttl = cache_ttl
        self._session = session
        self._clock = clock or get_clock()

    @property
    def session(self):
        if self._session is None:
            self._session = get_request_session_pool()
        return self._session

    # ==================== Public contract ====================

    def fetch_channel(self, remote_id: str, force_refresh: bool = False) -> ChannelPayload:
        data = self._request(
            'channels',
            {'part': ','.join(CHANNEL_PARTS), 'id': remote_id},
            resource_id=remote_id,
            fields=CHANNEL_PARTS,
            force_refresh=force_refresh,
        )
        items = data.get('items') or []
        if not items:
            raise ResourceNotFound(f'Channel {remote_id} not found upstream')
        return channel_from_api(items[0])

    def fetch_videos(
        self,
        channel_remote_id: str,
        page_token: Optional[str] = None,
        force_refresh: bool = False
    ) -> Tuple[List[VideoPayload], Optional[str]]:
        """One page of a channel's videos, newest first, with statistics."""
        params = {
            'part': ','.join(SEARCH_PARTS),
            'channelId': channel_remote_id,
            'type': 'video',
            'order': 'date',
            'maxResults': VIDEO_PAGE_SIZE,
        }
        if page_token:
            params['pageToken'] = page_token
        listing = self._request(
            'search', params,
            resource_id=channel_remote_id,
            page_token=page_token,
            fields=SEARCH_PARTS,
            force_refresh=force_refresh,
        )

        search_items = [
            item for item in (listing.get('items') or [])
            if isinstance(item.get('id'), dict) and item['id'].get('videoId')
        ]
        video_ids = [item['id']['videoId'] for item in search_items]

        details = {}
        if video_ids:
            joined = ','.join(video_ids)
            detail_data = self._request(
                'videos',
                {'part': ','.join(VIDEO_PARTS), 'id': joined},
                resource_id=joined,
                fields=VIDEO_PARTS,
                force_refresh=force_refresh,
            )
            details = {item.get('id'): item for item in (detail_data.get('items') or [])}

        videos = []
        for item in search_items:
            video_id = item['id']['videoId']
            source = details.get(video_id, item)
            videos.append(video_from_api(source, channel_id=channel_remote_id))

        return videos, listing.get('nextPageToken') or None

    def fetch_comments(
        self,
        video_remote_id: str,
        page_token: Optional[str] = None,
        force_refresh: bool = False
    ) -> Tuple[List[CommentPayload], Optional[str]]:
        """One page of a video's top-level comments."""
        params = {
            'part': ','.join(COMMENT_PARTS),
            'videoId': video_remote_id,
            'maxResults': COMMENT_PAGE_SIZE,
            'textFormat': 'plainText',
        }
        if page_token:
            params['pageToken'] = page_token
        try:
            data = self._request(
                'commentThreads', params,
                resource_id=video_remote_id,
                page_token=page_token,
                fields=COMMENT_PARTS,
                force_refresh=force_refresh,
            )
        except UpstreamRejected as e:
            if e.context.get('reason') == 'commentsDisabled':
                logger.debug(f"Comments disabled for video {video_remote_id}")
                return [], None
            raise

        comments = [comment_from_api(item, video_id=video_remote_id) for item in (data.get('items') or [])]
        return comments, data.get('nextPageToken') or None

    # ==================== Pagination helpers ====================

    def iter_pages(
        self,
        fetch: Callable[..., Tuple[List[Any], Optional[str]]],
        resource_id: str,
        force_refresh: bool = False
    ) -> Iterator[Page]:
        """Yield pages until the upstream stops returning a next-page token."""
        page_token = None
        seen_tokens = set()
        while True:
            items, next_token = fetch(resource_id, page_token=page_token, force_refresh=force_refresh)
            yield Page(items=items, next_page_token=next_token)
            if not next_token or next_token in seen_tokens:
                return
            seen_tokens.add(next_token)
            page_token = next_token

    def iter_video_pages(self, channel_remote_id: str, force_refresh: bool = False) -> Iterator[Page]:
        return self.iter_pages(self.fetch_videos, channel_remote_id, force_refresh)

    def iter_comment_pages(self, video_remote_id: str, force_refresh: bool = False) -> Iterator[Page]:
        return self.iter_pages(self.fetch_comments, video_remote_id, force_refresh)

    def fetch_all_videos(self, channel_remote_id: str, force_refresh: bool = False) -> PagedFetch:
        return self._drain(self.iter_video_pages(channel_remote_id, force_refresh))

    def fetch_all_comments(self, video_remote_id: str, force_refresh: bool = False) -> PagedFetch:
        return self._drain(self.iter_comment_pages(video_remote_id, force_refresh))

    @staticmethod
    def _drain(pages: Iterator[Page]) -> PagedFetch:
        result = PagedFetch()
        try:
            for page in pages:
                result.items.extend(page.items)
                result.pages += 1
        except SyncError as e:
            result.error = e
        return result

    # ==================== Transport ====================

    def _request(
        self,
        endpoint: str,
        params: Dict[str, Any],
        resource_id: str,
        page_token: Optional[str] = None,
        fields=(),
        force_refresh: bool = False
    ) -> Dict:
        signature = make_signature(endpoint, resource_id, page_token, fields)
        if self.cache is not None and not force_refresh:
            cached = self.cache.get(signature)
            if cached is not None:
                logger.debug(f"[Cache] Hit {endpoint} {resource_id} page={page_token or '-'}")
                return cached

        token = self.credentials.get_token(self.credential_ref)
        if not token:
            raise CredentialInvalid(
                f"No usable token for credential '{self.credential_ref}'",
                credential_ref=self.credential_ref,
            )

        url = f'{self.base_url}/{endpoint}'
        headers = {'Authorization': f'Bearer {token}', 'Accept': 'application/json'}
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            self.bucket.acquire(timeout=self.quota_timeout)
            try:
                data = self._send(url, params, headers)
            except _TransientError as e:
                last_error = e.cause or e
                if attempt >= self.max_attempts:
                    break
                delay = self.backoff.delay(attempt)
                logger.warning(
                    f"[Retry] {endpoint} {resource_id} attempt {attempt}/{self.max_attempts} "
                    f"failed: {e}; retrying in {delay:.2f}s"
                )
                self._clock.sleep(delay)
                continue

            if self.cache is not None:
                self.cache.put(signature, data, self.cache_ttl)
            return data

        logger.error(f"[Retry] {endpoint} {resource_id} gave up after {self.max_attempts} attempts: {last_error}")
        raise UpstreamUnavailable(
            f'{endpoint} unavailable after {self.max_attempts} attempts: {last_error}',
            last_error=last_error,
        )

    def _send(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> Dict:
        """Perform one HTTP request and classify the outcome."""
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.http_timeout)
        except requests.RequestException as e:
            raise _TransientError(f'transport error: {e}', e) from e

        status = response.status_code
        if status == 200:
            try:
                return response.json()
            except ValueError as e:
                raise _TransientError('malformed JSON body', e) from e

        if status == 429 or status >= 500:
            raise _TransientError(f'HTTP {status}')

        reason = _error_reason(response)
        if status == 401:
            raise self._credential_rejected(f'HTTP 401 {reason}'.strip())
        if status == 403:
            if reason in QUOTA_REASONS:
                raise QuotaExceeded(f'Upstream quota exhausted ({reason})', reason=reason)
            if reason in RESOURCE_REASONS:
                raise UpstreamRejected(f'HTTP 403 {reason}', status_code=status, reason=reason)
            raise self._credential_rejected(f'HTTP 403 {reason}'.strip())
        if status == 404:
            raise ResourceNotFound(f'{url} returned 404 {reason}'.strip(), reason=reason)
        raise UpstreamRejected(f'HTTP {status} {reason}'.strip(), status_code=status, reason=reason)

    def _credential_rejected(self, message: str) -> CredentialInvalid:
        """Mark the credential invalid and build the error to raise."""
        logger.warning(f"Credential '{self.credential_ref}' rejected upstream: {message}")
        invalidate = getattr(self.credentials, 'invalidate', None)
        if invalidate is not None:
            invalidate(self.credential_ref, message)
        return CredentialInvalid(
            f"Credential '{self.credential_ref}' rejected: {message}",
            credential_ref=self.credential_ref,
        )
