"""
GitLab REST API client with pagination, rate limiting and backoff.

The client is fail-soft: ``request()`` always returns a list. Permanent
failures (authentication, permissions, exhausted retries) are logged
and produce an empty result so that one broken endpoint degrades a
single report instead of aborting the whole run.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable
from urllib.parse import parse_qsl, urlsplit

import requests
from requests.exceptions import RequestException

from .logging_config import log_api_call
from .metrics import ApiMetrics
from .rate_limiting import RateLimiter
from .types import RequestAttempt

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v4"


@dataclass
class APICallStats:
    """Track API call statistics."""
    total_calls: int = 0
    successful_calls: int = 0
    retried_calls: int = 0
    failed_calls: int = 0
    not_found_calls: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "retried_calls": self.retried_calls,
            "failed_calls": self.failed_calls,
            "not_found_calls": self.not_found_calls,
        }


@dataclass
class GitLabResponse:
    """Wrapper for a single GitLab API response."""
    status_code: int | None
    data: Any
    headers: dict[str, str]

    @property
    def is_success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300

    @property
    def total_items(self) -> int | None:
        """Get total items from GitLab pagination headers."""
        val = self.headers.get("X-Total") or self.headers.get("x-total")
        try:
            return int(val) if val else None
        except ValueError:
            return None


class GitLabClient:
    """
    GitLab REST API client.

    Features:
    - Page/per_page pagination with a page ceiling
    - Minimum call spacing and per-minute budget via an owned RateLimiter
    - Exponential backoff with jitter for 5xx and network errors
    - Long back-off for 429, no retry for 401/403, 404 treated as no data
    - Per-client call statistics and optional metrics

    Usage:
        client = GitLabClient("https://gitlab.com", "your-token")
        projects = client.request("/projects?archived=false", all_pages=True)
        project = client.get_one("/projects/42")
    """

    DEFAULT_TIMEOUT = 120
    DEFAULT_PER_PAGE = 100
    DEFAULT_MAX_PAGES = 100
    MAX_RETRIES = 3
    BASE_DELAY_SECONDS = 1.0
    MAX_DELAY_SECONDS = 60.0
    RATE_LIMIT_SLEEP_SECONDS = 60.0
    RATE_LIMIT_JITTER_SECONDS = 30.0
    MAX_RATE_LIMIT_RETRIES = 10

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY_SECONDS,
        max_delay: float = MAX_DELAY_SECONDS,
        verify_ssl: bool = True,
        rate_limiter: RateLimiter | None = None,
        metrics: ApiMetrics | None = None,
        strict_rate_limit_retries: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize GitLab client.

        Args:
            base_url: GitLab instance URL (e.g., "https://gitlab.com")
            token: Personal Access Token for authentication
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt for retryable failures
            base_delay: First backoff delay in seconds
            max_delay: Backoff ceiling in seconds
            verify_ssl: Whether to verify SSL certificates
            rate_limiter: Limiter to use; a default one is created if omitted
            metrics: Optional metrics collector for request attempts
            strict_rate_limit_retries: Count 429 responses against max_retries
            sleep: Sleep function used for backoff (injectable for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.verify_ssl = verify_ssl
        self.rate_limiter = rate_limiter or RateLimiter()
        self.metrics = metrics
        self.strict_rate_limit_retries = strict_rate_limit_retries
        self._sleep = sleep
        self.stats = APICallStats()
        self._stats_lock = Lock()

        self._session = requests.Session()
        self._session.headers.update({
            "PRIVATE-TOKEN": token,
            "Accept": "application/json",
            "User-Agent": "GitLab-Insights/0.1.0",
        })
        self._session.verify = verify_ssl

    # ------------------------------------------------------------------
    # URL handling
    # ------------------------------------------------------------------

    def _split_endpoint(self, endpoint: str) -> tuple[str, list[tuple[str, str]]]:
        """
        Split an endpoint into an absolute URL and its query parameters.

        The query stays a list of pairs so repeated keys such as
        ``severity[]=critical&severity[]=high`` keep every value.
        """
        parts = urlsplit(endpoint)
        path = parts.path
        if not path.startswith("/"):
            path = "/" + path
        if not path.startswith(API_PREFIX + "/") and path != API_PREFIX:
            path = API_PREFIX + path
        return f"{self.base_url}{path}", parse_qsl(parts.query, keep_blank_values=True)

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff for the given 1-based attempt, plus up to 10% jitter."""
        delay = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay * 0.1)

    def _rate_limit_backoff(self, headers: dict[str, str]) -> float:
        retry_after = headers.get("Retry-After") or headers.get("retry-after")
        base = self.RATE_LIMIT_SLEEP_SECONDS
        if retry_after:
            try:
                base = float(retry_after)
            except ValueError:
                pass
        return base + random.uniform(0, self.RATE_LIMIT_JITTER_SECONDS)

    def _count(self, field: str) -> None:
        with self._stats_lock:
            setattr(self.stats, field, getattr(self.stats, field) + 1)

    def _record(self, attempt: RequestAttempt) -> None:
        if self.metrics is not None:
            self.metrics.record_attempt(attempt)
            if self.rate_limiter.info.remaining is not None:
                self.metrics.rate_limit_remaining.set(self.rate_limiter.info.remaining)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> GitLabResponse:
        """
        Perform one logical request with rate limiting and retries.

        Returns the final response. Retryable failures that never succeed
        come back with their last status code (or ``None`` for network
        errors); callers decide how to degrade.
        """
        url, query = self._split_endpoint(endpoint)
        if params:
            query = [(key, value) for key, value in query if key not in params]
            query.extend(params.items())

        attempt = 0
        failures = 0
        rate_limited = 0
        last = GitLabResponse(None, None, {})

        while True:
            attempt += 1
            self.rate_limiter.acquire()
            self._count("total_calls")
            if attempt > 1:
                self._count("retried_calls")

            started = time.monotonic()
            try:
                response = self._session.request(
                    method,
                    url,
                    params=query,
                    json=body,
                    timeout=self.timeout,
                )
            except RequestException as e:
                latency = time.monotonic() - started
                self._record(RequestAttempt(endpoint, method, attempt, None, latency))
                failures += 1
                if failures > self.max_retries:
                    logger.error(f"{method} {endpoint} failed after {attempt} attempts: {e}")
                    self._count("failed_calls")
                    return GitLabResponse(None, None, {})
                backoff = self._calculate_backoff(failures)
                logger.warning(
                    f"Request error on {endpoint}: {e}, retrying in {backoff:.1f}s "
                    f"(attempt {attempt}/{self.max_retries + 1})"
                )
                self._sleep(backoff)
                continue

            latency = time.monotonic() - started
            status = response.status_code
            headers = dict(response.headers)
            self.rate_limiter.update_from_headers(headers)
            self._record(RequestAttempt(endpoint, method, attempt, status, latency))
            log_api_call(logger, method, endpoint, status, latency * 1000)

            try:
                data = response.json()
            except ValueError:
                data = response.text
            last = GitLabResponse(status, data, headers)

            if 200 <= status < 300:
                self._count("successful_calls")
                return last

            if status == 429:
                rate_limited += 1
                if self.strict_rate_limit_retries:
                    failures += 1
                    exhausted = failures > self.max_retries
                else:
                    exhausted = rate_limited > self.MAX_RATE_LIMIT_RETRIES
                if exhausted:
                    logger.error(f"Rate limited on {endpoint} after {attempt} attempts, giving up")
                    self._count("failed_calls")
                    return last
                backoff = self._rate_limit_backoff(headers)
                logger.warning(f"Rate limited (429) on {endpoint}, sleeping {backoff:.0f}s")
                self._sleep(backoff)
                self.rate_limiter.reset()
                continue

            if status == 401:
                logger.error(f"Authentication error (401) on {endpoint}: check the access token")
                self._count("failed_calls")
                return last

            if status == 403:
                logger.error(f"Permission error (403) on {endpoint}: token lacks access")
                self._count("failed_calls")
                return last

            if status == 404:
                logger.debug(f"Not found (404): {endpoint}")
                self._count("not_found_calls")
                return last

            failures += 1
            if failures > self.max_retries:
                logger.error(f"{method} {endpoint} failed with {status} after {attempt} attempts")
                self._count("failed_calls")
                return last

            backoff = self._calculate_backoff(failures)
            if 500 <= status < 600:
                logger.warning(
                    f"Server error {status} on {endpoint}, retrying in {backoff:.1f}s "
                    f"(attempt {attempt}/{self.max_retries + 1})"
                )
            else:
                logger.warning(
                    f"Unexpected status {status} on {endpoint}, retrying in {backoff:.1f}s "
                    f"(attempt {attempt}/{self.max_retries + 1})"
                )
            self._sleep(backoff)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        all_pages: bool = False,
        per_page: int = DEFAULT_PER_PAGE,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> list[Any]:
        """
        Fetch an endpoint as a flat list of decoded JSON items.

        Args:
            endpoint: Path relative to /api/v4, optionally with a query string
            method: HTTP method
            body: JSON body for write methods
            all_pages: Follow pagination until a short page or ``max_pages``
            per_page: Items requested per page
            max_pages: Page ceiling when paginating

        Returns:
            List of items; empty on any unrecoverable failure
        """
        if not all_pages:
            response = self._send(endpoint, method, body=body)
            if not response.is_success:
                return []
            return self._as_items(response.data)

        items: list[Any] = []
        page = 1
        while True:
            response = self._send(
                endpoint, method, params={"page": page, "per_page": per_page}, body=body
            )
            if response.status_code == 404:
                logger.debug(f"Pagination of {endpoint} ended at page {page} (404)")
                break
            if not response.is_success:
                if page > 1:
                    logger.warning(
                        f"Pagination of {endpoint} failed at page {page}; discarding {len(items)} items"
                    )
                return []

            data = response.data
            if not isinstance(data, list):
                items.extend(self._as_items(data))
                break

            items.extend(data)
            if len(data) < per_page:
                break
            if page >= max_pages:
                logger.warning(
                    f"Reached page limit ({max_pages}) for {endpoint}; "
                    f"returning {len(items)} items, more may exist"
                )
                break
            page += 1

        return items

    @staticmethod
    def _as_items(data: Any) -> list[Any]:
        if data is None or data == "":
            return []
        if isinstance(data, list):
            return data
        return [data]

    def get_one(self, endpoint: str) -> dict[str, Any] | None:
        """Fetch a single object, or None when unavailable."""
        items = self.request(endpoint)
        if items and isinstance(items[0], dict):
            return items[0]
        return None

    def count(self, endpoint: str, max_pages: int = DEFAULT_MAX_PAGES) -> int:
        """
        Count items behind a list endpoint.

        Uses the X-Total header from a one-item page when GitLab provides it
        and falls back to paginating through the items.
        """
        response = self._send(endpoint, params={"page": 1, "per_page": 1})
        if not response.is_success:
            return 0
        total = response.total_items
        if total is not None:
            return total
        return len(self.request(endpoint, all_pages=True, max_pages=max_pages))

    def test_connection(self) -> bool:
        """Check that the instance is reachable and the token is accepted."""
        version = self.get_one("/version")
        if version is not None:
            logger.info(f"Connected to GitLab {version.get('version', 'unknown')} at {self.base_url}")
            return True
        user = self.get_one("/user")
        if user is not None:
            logger.info(f"Connected to {self.base_url} as {user.get('username', 'unknown')}")
            return True
        logger.error(f"Cannot reach GitLab API at {self.base_url}")
        return False

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> "GitLabClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
