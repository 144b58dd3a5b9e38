"""
Rate-limited, retrying client for the CRM search API.

Every HTTP request draws a credit from the shared ``TokenBucket`` and runs
under the shared ``RetryPolicy``. Read-only calls degrade to empty
results when the remote stays unavailable; mutating calls raise.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests

from .config import DEFAULT_BASE_URL, Settings
from .errors import (
    AuthenticationError,
    RateLimitedError,
    RemoteError,
    TransientRemoteError,
)
from .logger import StructuredLogger, get_logger
from .ratelimit import RateLimitTimeout, TokenBucket
from .retry import RetryPolicy

EMPTY_RESULT: Dict[str, Any] = {"results": [], "paging": None}

SEARCH_PAGE_LIMIT = 100


@dataclass
class Request:
    """One remote API call."""

    method: str
    path: str
    json: Optional[Dict[str, Any]] = None
    params: Dict[str, Any] = field(default_factory=dict)
    object_type: str = "unknown"


@dataclass
class PageResult:
    """Outcome of a paginated search."""

    records: List[Dict[str, Any]]
    pages_fetched: int
    complete: bool
    truncated: bool = False


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def error_for_response(response) -> Optional[RemoteError]:
    """Map a non-2xx response to the error taxonomy. Returns None for 2xx."""
    status = response.status_code
    if 200 <= status < 300:
        return None
    body = (response.text or "")[:300]
    if status == 401:
        return AuthenticationError(f"Remote API rejected credentials (401): {body}", status=status)
    if status == 429:
        return RateLimitedError(
            f"Remote API rate limit hit (429): {body}",
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    return TransientRemoteError(f"Remote API error ({status}): {body}", status=status)


class RemoteClient:
    """
    Client for the CRM v3 object search endpoints.

    Args:
        api_key: Private app token sent as a bearer token
        base_url: API root
        limiter: Shared token bucket (one credit per HTTP request)
        retry_policy: Shared retry policy
        session: requests-compatible session (injectable for tests)
        timeout: Per-request wall-clock budget in seconds
        acquire_timeout: Max wait for a rate limit credit
        logger: Structured logger
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        limiter: Optional[TokenBucket] = None,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 15.0,
        acquire_timeout: Optional[float] = 30.0,
        portal_id: Optional[str] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter or TokenBucket()
        self.retry_policy = retry_policy or RetryPolicy(on_retry=self._log_retry)
        self.timeout = timeout
        self.acquire_timeout = acquire_timeout
        self.portal_id = portal_id
        self.logger = logger or get_logger()
        self.session = session or requests.Session()
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})
        self.session.headers.update({"Content-Type": "application/json"})

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "RemoteClient":
        limiter = TokenBucket(capacity=settings.rate_capacity, rate=settings.rate_per_sec)
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            limiter=limiter,
            timeout=settings.timeout,
            portal_id=settings.portal_id,
            **kwargs,
        )

    def _log_retry(self, attempt: int, error: BaseException, delay: float):
        self.logger.warning(
            "Retrying remote call",
            attempt=attempt,
            error=type(error).__name__,
            delay=round(delay, 3),
        )

    def _send(self, request: Request) -> Dict[str, Any]:
        """One attempt: take a credit, send, classify."""
        try:
            self.limiter.acquire(timeout=self.acquire_timeout)
        except RateLimitTimeout as e:
            raise TransientRemoteError(str(e)) from e

        self.logger.record_api_call()
        url = f"{self.base_url}{request.path}"
        try:
            resp = self.session.request(
                request.method,
                url,
                json=request.json,
                params=request.params or None,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise TransientRemoteError(f"Remote request timed out after {self.timeout}s: {url}") from e
        except requests.exceptions.RequestException as e:
            raise TransientRemoteError(f"Remote request error: {e}") from e

        error = error_for_response(resp)
        if error is not None:
            raise error
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise TransientRemoteError(f"Remote returned invalid JSON: {url}") from e

    def execute(self, request: Request, mutating: bool = False) -> Optional[Dict[str, Any]]:
        """
        Run a request under the retry policy.

        Returns the parsed payload. For read-only requests an unrecoverable
        failure is logged and ``None`` is returned; mutating requests
        propagate the error.
        """
        self.logger.record_remote_attempt(request.object_type)
        try:
            payload = self.retry_policy.call(self._send, request)
        except RemoteError as e:
            self.logger.record_remote_failure(request.object_type, type(e).__name__)
            if mutating:
                self.logger.error(
                    "Remote write failed",
                    path=request.path,
                    kind=e.kind,
                    status=e.status,
                )
                raise
            self.logger.warning(
                "Remote read failed, degrading to empty result",
                path=request.path,
                kind=e.kind,
                status=e.status,
            )
            return None
        self.logger.record_remote_success(request.object_type)
        return payload

    # Read operations

    def search(
        self,
        object_type: str,
        filter_groups: Optional[List[Dict[str, Any]]] = None,
        properties: Optional[Sequence[str]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
        after: Optional[str] = None,
        limit: int = SEARCH_PAGE_LIMIT,
        query: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Search one page of records. Never raises on remote failure.

        Returns:
            ``{"results": [...], "paging": {...} | None}``
        """
        payload = self._search_page(object_type, filter_groups, properties, sorts, after, limit, query)
        if payload is None:
            return dict(EMPTY_RESULT)
        return payload

    def _search_page(self, object_type, filter_groups, properties, sorts, after, limit, query):
        body: Dict[str, Any] = {"limit": min(limit, SEARCH_PAGE_LIMIT)}
        if filter_groups:
            body["filterGroups"] = filter_groups
        if properties:
            body["properties"] = list(properties)
        if sorts:
            body["sorts"] = sorts
        if after:
            body["after"] = after
        if query:
            body["query"] = query
        payload = self.execute(Request(
            "POST",
            f"/crm/v3/objects/{object_type}/search",
            json=body,
            object_type=object_type,
        ))
        if payload is None:
            return None
        return {
            "results": payload.get("results") or [],
            "paging": payload.get("paging"),
            "total": payload.get("total"),
        }

    def get_by_id(
        self,
        object_type: str,
        record_id: str,
        properties: Optional[Sequence[str]] = None,
    ) -> Optional[Dict[str, Any]]:
        params = {"properties": ",".join(properties)} if properties else {}
        return self.execute(Request(
            "GET",
            f"/crm/v3/objects/{object_type}/{record_id}",
            params=params,
            object_type=object_type,
        ))

    def search_all(
        self,
        object_type: str,
        filter_groups: Optional[List[Dict[str, Any]]] = None,
        properties: Optional[Sequence[str]] = None,
        sorts: Optional[List[Dict[str, Any]]] = None,
        page_size: int = SEARCH_PAGE_LIMIT,
        max_pages: int = 20,
        page_delay: float = 0.15,
        sleep: Callable[[float], None] = time.sleep,
    ) -> PageResult:
        """
        Follow cursors until exhausted, deduplicating by record id.

        Stops at ``max_pages``, on a repeated cursor, or on a page that
        contains only already-seen records. ``complete`` is False when a
        page fetch failed or ``max_pages`` was hit with a cursor still
        pending; the latter also sets ``truncated``.
        """
        seen: Dict[str, Dict[str, Any]] = {}
        after = None
        pages = 0
        while pages < max_pages:
            if pages > 0:
                sleep(page_delay)
            payload = self._search_page(object_type, filter_groups, properties, sorts, after, page_size, None)
            if payload is None:
                self.logger.error("Pagination aborted by remote failure", object_type=object_type, page=pages + 1)
                return PageResult(list(seen.values()), pages, complete=False)
            pages += 1

            results = payload["results"]
            new = [r for r in results if r.get("id") is not None and str(r["id"]) not in seen]
            for record in new:
                seen[str(record["id"])] = record
            self.logger.debug(
                "Fetched page",
                object_type=object_type,
                page=pages,
                new=len(new),
                duplicates=len(results) - len(new),
                total=len(seen),
            )
            if results and not new:
                break

            next_after = ((payload.get("paging") or {}).get("next") or {}).get("after")
            if not next_after or next_after == after:
                break
            after = next_after
        else:
            self.logger.warning("Max page count reached with cursor pending", object_type=object_type, max_pages=max_pages)
            return PageResult(list(seen.values()), pages, complete=False, truncated=True)

        return PageResult(list(seen.values()), pages, complete=True)

    def fetch_brand_pool(
        self,
        object_type: str,
        buckets: Sequence[Tuple[str, int]],
        properties: Optional[Sequence[str]] = None,
        status_property: str = "client_status",
        max_workers: int = 3,
    ) -> List[Dict[str, Any]]:
        """
        Fetch status-stratified buckets concurrently.

        Args:
            buckets: ``(status, limit)`` pairs; results keep bucket order

        All bucket queries share this client's limiter.
        """
        def fetch(bucket: Tuple[str, int]) -> List[Dict[str, Any]]:
            status, limit = bucket
            filters = [{"filters": [{"propertyName": status_property, "operator": "EQ", "value": status}]}]
            records: List[Dict[str, Any]] = []
            after = None
            while len(records) < limit:
                page = self.search(
                    object_type,
                    filter_groups=filters,
                    properties=properties,
                    after=after,
                    limit=min(SEARCH_PAGE_LIMIT, limit - len(records)),
                )
                records.extend(page["results"])
                after = ((page.get("paging") or {}).get("next") or {}).get("after")
                if not page["results"] or not after:
                    break
            return records[:limit]

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            per_bucket = list(pool.map(fetch, buckets))

        pool_records: List[Dict[str, Any]] = []
        seen = set()
        for records in per_bucket:
            for record in records:
                record_id = str(record.get("id"))
                if record_id not in seen:
                    seen.add(record_id)
                    pool_records.append(record)
        return pool_records

    # Write operations

    def create_webhook_subscription(
        self,
        app_id: str,
        object_type: str,
        property_name: Optional[str],
        target_url: str,
        event_type: str = "propertyChange",
    ) -> Dict[str, Any]:
        """Register a change subscription. Raises on failure."""
        body: Dict[str, Any] = {
            "eventType": event_type,
            "objectType": object_type,
            "active": True,
            "targetUrl": target_url,
        }
        if property_name:
            body["propertyName"] = property_name
        return self.execute(
            Request("POST", f"/webhooks/v3/{app_id}/subscriptions", json=body, object_type="webhooks"),
            mutating=True,
        ) or {}

    def record_url(self, object_type: str, record_id: str) -> Optional[str]:
        if not self.portal_id:
            return None
        return f"https://app.hubspot.com/contacts/{self.portal_id}/record/{object_type}/{record_id}"
