"""
GitLab REST API client with page-at-a-time fetching and backoff support.

Supports both GitLab SaaS and self-managed instances.
Only performs GET requests (read-only, safe operations).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol
from urllib.parse import urljoin

import requests
from requests.exceptions import RequestException
from requests.structures import CaseInsensitiveDict

from .rate_limiting import RateLimiter

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v4"
MAX_PER_PAGE = 100


class GitLabClientError(Exception):
    """Base exception for GitLab client errors."""
    def __init__(self, message: str, status_code: int | None = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class TransportError(GitLabClientError):
    """The request never produced an HTTP response (DNS, TLS, timeout, reset)."""
    def __init__(self, message: str):
        super().__init__(message, status_code=0)


class ApiError(GitLabClientError):
    """GitLab answered with a non-success status."""
    def __init__(self, status: int, body: Any = None):
        message = (body.get("message") or body.get("error")) if isinstance(body, dict) else body
        super().__init__(f"HTTP {status}: {message}", status_code=status, response=body)

    @property
    def status(self) -> int:
        return self.status_code or 0


class DataShapeError(GitLabClientError):
    """A response decoded, but not into the shape the caller needs."""


class AuthError(GitLabClientError):
    """Credential validation against the instance failed."""


@dataclass
class APICallStats:
    """Track API call statistics."""
    total_calls: int = 0
    successful_calls: int = 0
    retried_calls: int = 0
    failed_calls: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bump(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)


@dataclass
class PageResult:
    """
    One page of a collection endpoint.

    ``next_page`` is the opaque cursor for the following page of the same
    endpoint; ``None`` means the collection is exhausted.
    """
    status: int
    items: list[Any] = field(default_factory=list)
    next_page: str | None = None
    total: int | None = None
    error: GitLabClientError | None = None

    @property
    def ok(self) -> bool:
        return self.status == 200 and self.error is None

    @classmethod
    def failed(cls, error: GitLabClientError) -> "PageResult":
        return cls(status=error.status_code or 0, error=error)


class GitLabResponse:
    """Wrapper for GitLab API responses with case-insensitive header access."""

    def __init__(self, status_code: int, data: Any, headers: Mapping[str, str]):
        self.status_code = status_code
        self.data = data
        self.headers = CaseInsensitiveDict(headers)

    @property
    def next_page(self) -> str | None:
        """Cursor for the next page, from the X-Next-Page header."""
        return self.headers.get("X-Next-Page") or None

    @property
    def total_items(self) -> int | None:
        """Total items from the X-Total header, when GitLab reports it."""
        return _header_int(self.headers.get("X-Total"))


def _header_int(value: str | None) -> int | None:
    if value is None:
        return None
    value = value.strip()
    return int(value) if value.isdigit() else None


class FetchesPages(Protocol):
    """Anything that can fetch one page of a collection endpoint."""

    def fetch_page(
        self,
        endpoint: str,
        cursor: str | None = None,
        per_page: int = MAX_PER_PAGE,
        params: dict[str, Any] | None = None,
    ) -> PageResult:
        ...

    def get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> PageResult:
        ...


class GitLabClient:
    """
    GitLab REST API client with exponential backoff.

    Features:
    - One page per call via ``fetch_page``; never raises for HTTP or network errors
    - Exponential backoff for rate limits (429), server errors (5xx) and network errors
    - Respects Retry-After header
    - Header-driven rate limiting and a cap on concurrent requests
    - API call tracking/statistics

    Usage:
        client = GitLabClient("https://gitlab.example.com", "your-token")
        page = client.fetch_page("/groups/acme/projects")
        while page.ok and page.next_page:
            page = client.fetch_page("/groups/acme/projects", page.next_page)
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_CONNECT_TIMEOUT = 10
    MAX_RETRIES = 5
    BASE_BACKOFF_SECONDS = 1.0
    MAX_BACKOFF_SECONDS = 60.0

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        verify_ssl: bool = True,
        max_concurrent_requests: int = 4,
        rate_limiter: RateLimiter | None = None,
    ):
        """
        Initialize GitLab client.

        Args:
            base_url: GitLab instance URL (e.g., "https://gitlab.example.com")
            token: Personal Access Token for authentication
            timeout: Read timeout in seconds
            connect_timeout: Connect timeout in seconds
            max_retries: Maximum attempts for retryable failures
            verify_ssl: Whether to verify SSL certificates
            max_concurrent_requests: Upper bound on in-flight requests
            rate_limiter: Limiter consulted before every request
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = (connect_timeout, timeout)
        self.max_retries = max(1, max_retries)
        self.verify_ssl = verify_ssl
        self.stats = APICallStats()
        self.rate_limiter = rate_limiter or RateLimiter("gitlab")
        self._slots = threading.BoundedSemaphore(max(1, max_concurrent_requests))

        self._session = requests.Session()
        self._session.headers.update({
            "PRIVATE-TOKEN": token,
            "Accept": "application/json",
            "User-Agent": "GitLab-Inventory-Agent/0.1.0",
        })
        self._session.verify = verify_ssl

    def _build_url(self, path: str) -> str:
        """Build full URL from an API-relative path."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        if not path.startswith("/"):
            path = "/" + path
        if not path.startswith(API_PREFIX + "/"):
            path = API_PREFIX + path
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def _calculate_backoff(self, attempt: int, retry_after: int | None = None) -> float:
        """Calculate backoff time with exponential increase."""
        if retry_after is not None:
            return min(float(retry_after), self.MAX_BACKOFF_SECONDS)
        backoff = self.BASE_BACKOFF_SECONDS * (2 ** attempt)
        return min(backoff, self.MAX_BACKOFF_SECONDS)

    def _should_retry(self, status_code: int) -> bool:
        """Retry on rate limit (429) or server errors (5xx)."""
        return status_code == 429 or (500 <= status_code < 600)

    def _get_retry_after(self, headers: Mapping[str, str]) -> int | None:
        """Extract Retry-After header value."""
        return _header_int(CaseInsensitiveDict(headers).get("Retry-After"))

    def get(self, path: str, params: dict[str, Any] | None = None) -> GitLabResponse:
        """
        Perform GET request with automatic retry and backoff.

        Args:
            path: API endpoint path (e.g., "/projects" or "/api/v4/projects")
            params: Query parameters

        Returns:
            GitLabResponse for the last attempt

        Raises:
            TransportError: When every attempt failed without an HTTP response
        """
        url = self._build_url(path)
        params = params or {}
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            self.stats.bump("total_calls")
            try:
                logger.debug(f"GET {url} params={params} (attempt {attempt + 1})")
                self.rate_limiter.wait_if_needed()
                with self._slots:
                    response = self._session.get(url, params=params, timeout=self.timeout)

                headers = dict(response.headers)
                self.rate_limiter.update_from_headers(headers)
                try:
                    data = response.json()
                except ValueError:
                    data = response.text

                if self._should_retry(response.status_code) and attempt < self.max_retries - 1:
                    backoff = self._calculate_backoff(attempt, self._get_retry_after(headers))
                    self.stats.bump("retried_calls")
                    logger.warning(
                        f"Request failed with {response.status_code}, "
                        f"retrying in {backoff:.1f}s (attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(backoff)
                    continue

                if response.status_code < 400:
                    self.stats.bump("successful_calls")
                else:
                    self.stats.bump("failed_calls")
                return GitLabResponse(response.status_code, data, headers)

            except RequestException as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    self.stats.bump("retried_calls")
                    backoff = self._calculate_backoff(attempt)
                    logger.warning(
                        f"Request error: {e}, retrying in {backoff:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(backoff)
                else:
                    logger.error(f"Request failed after {self.max_retries} attempts: {e}")

        self.stats.bump("failed_calls")
        raise TransportError(f"GET {url} failed after {self.max_retries} attempts: {last_error}")

    def fetch_page(
        self,
        endpoint: str,
        cursor: str | None = None,
        per_page: int = MAX_PER_PAGE,
        params: dict[str, Any] | None = None,
    ) -> PageResult:
        """
        Fetch one page of a collection endpoint.

        Args:
            endpoint: Collection path relative to the API root
            cursor: Value of the previous page's X-Next-Page header (None for the first page)
            per_page: Page size, clamped to GitLab's ceiling of 100
            params: Extra query parameters

        Returns:
            PageResult; failures are reported through ``status`` and ``error``
        """
        query = dict(params or {})
        query["per_page"] = max(1, min(per_page, MAX_PER_PAGE))
        query["page"] = cursor or 1

        try:
            response = self.get(endpoint, query)
        except TransportError as e:
            return PageResult.failed(e)

        if response.status_code != 200:
            return PageResult.failed(ApiError(response.status_code, response.data))
        if not isinstance(response.data, list):
            return PageResult(
                status=response.status_code,
                error=DataShapeError(
                    f"{endpoint} returned {type(response.data).__name__}, expected a list",
                    status_code=response.status_code,
                ),
            )

        return PageResult(
            status=response.status_code,
            items=response.data,
            next_page=response.next_page,
            total=response.total_items,
        )

    def get_json(self, endpoint: str, params: dict[str, Any] | None = None) -> PageResult:
        """Fetch a single resource as a one-item PageResult."""
        try:
            response = self.get(endpoint, params)
        except TransportError as e:
            return PageResult.failed(e)

        if response.status_code != 200:
            return PageResult.failed(ApiError(response.status_code, response.data))
        if not isinstance(response.data, dict):
            return PageResult(
                status=response.status_code,
                error=DataShapeError(
                    f"{endpoint} returned {type(response.data).__name__}, expected an object",
                    status_code=response.status_code,
                ),
            )
        return PageResult(status=response.status_code, items=[response.data])

    def check_auth(self) -> dict[str, Any]:
        """
        Validate the token against the instance.

        Returns:
            The authenticated user's record

        Raises:
            AuthError: On any failure to confirm the credentials
        """
        result = self.get_json("/user")
        if not result.ok:
            raise AuthError(
                f"Credential validation against {self.base_url} failed: {result.error}",
                status_code=result.status,
            )
        user = result.items[0]
        logger.info(f"Authenticated to {self.base_url} as {user.get('username', 'unknown')}")
        return user

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()

    def __enter__(self) -> "GitLabClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
