"""Shared fixtures: an in-memory page fetcher standing in for GitLab."""

from __future__ import annotations

from typing import Any

import pytest

from inventory_agent.gitlab_client import (
    APICallStats,
    ApiError,
    AuthError,
    PageResult,
)
from inventory_agent.rate_limiting import RateLimiter


class FakeFetcher:
    """
    Serves canned pages keyed by endpoint.

    Collections are split into pages of ``page_size`` with GitLab-style
    next-page cursors ("2", "3", ...). Unknown endpoints answer 404.
    """

    def __init__(self):
        self.collections: dict[str, list[PageResult]] = {}
        self.singles: dict[str, PageResult] = {}
        self.calls: list[tuple[str, Any]] = []
        self.stats = APICallStats()
        self.rate_limiter = RateLimiter("fake", min_interval=0)
        self.auth_ok = True

    def add_collection(
        self,
        endpoint: str,
        items: list[Any],
        page_size: int = 100,
        report_total: bool = True,
    ) -> None:
        chunks = [items[i:i + page_size] for i in range(0, len(items), page_size)] or [[]]
        pages = []
        for index, chunk in enumerate(chunks):
            has_next = index < len(chunks) - 1
            pages.append(PageResult(
                status=200,
                items=list(chunk),
                next_page=str(index + 2) if has_next else None,
                total=len(items) if report_total else None,
            ))
        self.collections[endpoint] = pages

    def add_failure(self, endpoint: str, status: int, body: Any = None) -> None:
        self.collections[endpoint] = [PageResult.failed(ApiError(status, body or {"message": "404 Not Found"}))]

    def add_single(self, endpoint: str, data: dict[str, Any]) -> None:
        self.singles[endpoint] = PageResult(status=200, items=[data])

    def calls_to(self, endpoint: str) -> int:
        return sum(1 for called, _ in self.calls if called == endpoint)

    def fetch_page(self, endpoint, cursor=None, per_page=100, params=None) -> PageResult:
        self.calls.append((endpoint, cursor))
        pages = self.collections.get(endpoint)
        if pages is None:
            return PageResult.failed(ApiError(404, {"message": "404 Not Found"}))
        page = pages[int(cursor or 1) - 1]
        return PageResult(
            status=page.status,
            items=list(page.items),
            next_page=page.next_page,
            total=page.total,
            error=page.error,
        )

    def get_json(self, endpoint, params=None) -> PageResult:
        self.calls.append((endpoint, None))
        result = self.singles.get(endpoint)
        if result is None:
            return PageResult.failed(ApiError(404, {"message": "404 Not Found"}))
        return result

    def check_auth(self) -> dict[str, Any]:
        if not self.auth_ok:
            raise AuthError("Credential validation failed: HTTP 401", status_code=401)
        return {"username": "inventory-bot"}

    def close(self) -> None:
        pass


def issue(iid: int, notes: int = 0) -> dict[str, Any]:
    return {"iid": iid, "user_notes_count": notes}


def project_item(project_id: int, path: str, fork_parent: str | None = None) -> dict[str, Any]:
    item: dict[str, Any] = {"id": project_id, "path": path, "name": path.title()}
    if fork_parent:
        item["forked_from_project"] = {"path_with_namespace": fork_parent}
    return item


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def acme_fetcher() -> FakeFetcher:
    """Group "acme": widgets (5 issues over pages of 3, 2 MRs) and gadgets (0 issues, 1 MR)."""
    fake = FakeFetcher()
    fake.add_collection("/groups/acme/projects", [project_item(1, "widgets"), project_item(2, "gadgets")])
    fake.add_collection("/projects/1/issues", [issue(i) for i in range(1, 6)], page_size=3)
    fake.add_collection("/projects/1/merge_requests", [issue(1), issue(2)])
    fake.add_collection("/projects/2/issues", [])
    fake.add_collection("/projects/2/merge_requests", [issue(1)])
    return fake
