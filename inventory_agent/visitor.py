"""
Per-project aggregation.

A ProjectVisitor runs the sub-crawls for one project (issues, merge
requests, and optionally notes, commit comments and repository size) and
folds them into a single ProjectStats record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any

from .crawler import CrawlResult, ResourceCrawler
from .gitlab_client import DataShapeError, FetchesPages
from .schema import Project, ProjectStats, repository_size
from .utils import bytes_to_kb

logger = logging.getLogger(__name__)

LISTING_PARAMS = {"scope": "all", "state": "all"}


@dataclass(frozen=True)
class AggregationFlags:
    """Optional, more expensive sub-crawls."""
    notes: bool = False
    commit_comments: bool = False
    repo_size: bool = False


class ProjectVisitor:
    """
    Build a ProjectStats record for one project.

    Failed sub-crawls are logged and leave their field empty; ``visit``
    never raises for API or network errors. ``failures`` counts them across
    every visit made with this instance.
    """

    def __init__(
        self,
        fetcher: FetchesPages,
        flags: AggregationFlags | None = None,
        per_page: int = 100,
    ):
        self.fetcher = fetcher
        self.flags = flags or AggregationFlags()
        self.crawler = ResourceCrawler(fetcher, per_page=per_page)
        self.failures = 0
        self._failures_lock = threading.Lock()

    def visit(self, project: Project) -> ProjectStats:
        """
        Aggregate every enabled counter for ``project``.

        Args:
            project: Project decoded from a group listing

        Returns:
            ProjectStats; fields whose crawl failed are None
        """
        base = f"/projects/{project.id}"
        stats = ProjectStats(
            group=project.group,
            project=project.name,
            fork_parent=project.fork_parent,
        )

        issues = self.crawler.count(f"{base}/issues", params=LISTING_PARAMS)
        if self._check(project, "issues", issues):
            stats.issues = issues.count

        merge_requests = self.crawler.count(f"{base}/merge_requests", params=LISTING_PARAMS)
        if self._check(project, "merge_requests", merge_requests):
            stats.merge_requests = merge_requests.count

        if self.flags.notes:
            issue_notes = self.crawler.sum_field(f"{base}/issues", "user_notes_count", params=LISTING_PARAMS)
            if self._check(project, "issues (notes)", issue_notes):
                stats.issue_notes = issue_notes.value

            mr_notes = self.crawler.sum_field(
                f"{base}/merge_requests", "user_notes_count", params=LISTING_PARAMS
            )
            if self._check(project, "merge_requests (notes)", mr_notes):
                stats.merge_request_notes = mr_notes.value

        if self.flags.commit_comments:
            stats.commit_comments = self._commit_comments(project)

        if self.flags.repo_size:
            stats.repo_size_kb = self._repo_size_kb(project)

        return stats

    def _failed(self, n: int = 1) -> None:
        with self._failures_lock:
            self.failures += n

    def _check(self, project: Project, resource: str, result: CrawlResult[Any]) -> bool:
        if result.ok:
            return True
        self._failed()
        logger.warning(
            f"{project.group}/{project.name}: {resource} crawl failed "
            f"with status {result.status}: {result.error}"
        )
        return False

    def _commit_comments(self, project: Project) -> int | None:
        """Sum comment totals over every commit; three levels deep (project, commit, comments)."""
        base = f"/projects/{project.id}/repository/commits"
        failed_commits: list[str] = []

        def add_comments(acc: int, commit: Any) -> int:
            sha = commit.get("id") if isinstance(commit, dict) else None
            if not sha:
                failed_commits.append("<no sha>")
                logger.warning(f"{project.group}/{project.name}: commit entry without an id")
                return acc
            comments = self._comment_count(f"{base}/{sha}/comments")
            if not comments.ok:
                failed_commits.append(sha)
                logger.warning(
                    f"{project.group}/{project.name}: comments for commit {sha[:12]} "
                    f"failed with status {comments.status}: {comments.error}"
                )
                return acc
            return acc + comments.count

        commits = self.crawler.crawl_all(base, add_comments, 0, params={"all": "true"})
        if not self._check(project, "commits", commits):
            return None
        if failed_commits:
            # partial sums are never reported
            self._failed(len(failed_commits))
            logger.warning(
                f"{project.group}/{project.name}: leaving commit comments empty, "
                f"{len(failed_commits)} commit(s) could not be read"
            )
            return None
        return commits.value

    def _comment_count(self, endpoint: str) -> CrawlResult[int]:
        """Comment count for one commit: X-Total of a one-item page, or a full walk without it."""
        page = self.fetcher.fetch_page(endpoint, None, 1)
        if not page.ok:
            return CrawlResult(value=0, status=page.status, error=page.error)
        if page.total is not None or page.next_page is None:
            return CrawlResult(
                value=0,
                status=page.status,
                total=page.total,
                items_seen=len(page.items),
                pages=1,
            )
        return self.crawler.count(endpoint)

    def _repo_size_kb(self, project: Project) -> int | None:
        result = self.fetcher.get_json(f"/projects/{project.id}", params={"statistics": "true"})
        if not result.ok:
            self._failed()
            logger.warning(
                f"{project.group}/{project.name}: project statistics failed "
                f"with status {result.status}: {result.error}"
            )
            return None
        try:
            return bytes_to_kb(repository_size(result.items[0]))
        except DataShapeError as e:
            self._failed()
            logger.warning(f"{project.group}/{project.name}: skipping repository size: {e}")
            return None
