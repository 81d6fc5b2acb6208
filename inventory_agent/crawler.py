"""
Exhaustive pagination over GitLab collection endpoints.

One loop serves every collection the inventory walks: groups, projects,
issues, merge requests, commits and commit comments. Items are folded into
an accumulator page by page so large collections are never held in memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from .gitlab_client import MAX_PER_PAGE, FetchesPages, GitLabClientError

logger = logging.getLogger(__name__)

A = TypeVar("A")

Reducer = Callable[[A, Any], A]


@dataclass
class CrawlResult(Generic[A]):
    """Outcome of one crawl: the folded value plus what the API reported."""
    value: A
    status: int
    total: int | None = None
    items_seen: int = 0
    pages: int = 0
    error: GitLabClientError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status == 200

    @property
    def count(self) -> int:
        """Item count, preferring GitLab's X-Total over what was walked."""
        return self.total if self.total is not None else self.items_seen


class ResourceCrawler:
    """
    Drive a page fetcher until a collection is exhausted.

    Usage:
        crawler = ResourceCrawler(client)
        result = crawler.crawl_all("/projects/1/issues", lambda acc, issue: acc + 1, 0)
    """

    def __init__(self, fetcher: FetchesPages, per_page: int = MAX_PER_PAGE):
        self.fetcher = fetcher
        self.per_page = per_page

    def crawl_all(
        self,
        endpoint: str,
        reducer: Reducer[A],
        initial: A,
        per_page: int | None = None,
        params: dict[str, Any] | None = None,
    ) -> CrawlResult[A]:
        """
        Walk every page of ``endpoint``, folding items into ``initial``.

        Stops after the first page without a next cursor, or at the first
        failed page. On failure the accumulator is returned as far as it got,
        together with the failing status and error.

        Args:
            endpoint: Collection path relative to the API root
            reducer: ``reducer(acc, item) -> acc``
            initial: Starting accumulator
            per_page: Page size (defaults to the crawler's)
            params: Extra query parameters sent with every page

        Returns:
            CrawlResult carrying the accumulator and the terminal status
        """
        size = per_page or self.per_page
        acc = initial
        cursor: str | None = None
        result: CrawlResult[A] = CrawlResult(value=acc, status=200)

        while True:
            page = self.fetcher.fetch_page(endpoint, cursor, size, params)
            result.pages += 1
            result.status = page.status

            if not page.ok:
                result.error = page.error
                logger.debug(f"Crawl of {endpoint} stopped at page {result.pages}: {page.error}")
                break

            if result.total is None:
                result.total = page.total
            for item in page.items:
                acc = reducer(acc, item)
                result.items_seen += 1

            if page.next_page is None:
                break
            cursor = page.next_page

        result.value = acc
        return result

    def count(self, endpoint: str, params: dict[str, Any] | None = None) -> CrawlResult[int]:
        """Crawl ``endpoint`` counting items."""
        return self.crawl_all(endpoint, lambda acc, _item: acc + 1, 0, params=params)

    def sum_field(
        self,
        endpoint: str,
        field_name: str,
        params: dict[str, Any] | None = None,
    ) -> CrawlResult[int]:
        """Crawl ``endpoint`` summing an integer field of each item; missing values count as 0."""
        def add(acc: int, item: Any) -> int:
            value = item.get(field_name) if isinstance(item, dict) else None
            return acc + value if isinstance(value, int) else acc

        return self.crawl_all(endpoint, add, 0, params=params)

    def collect(self, endpoint: str, params: dict[str, Any] | None = None) -> CrawlResult[list[Any]]:
        """Crawl ``endpoint`` keeping every item, for small collections like groups."""
        def keep(acc: list[Any], item: Any) -> list[Any]:
            acc.append(item)
            return acc

        return self.crawl_all(endpoint, keep, [], params=params)
