"""
Orchestrator - Main inventory workflow controller.

Walks the target groups, visits every project, streams one CSV row per
project and finishes with the cross-group name conflict report.
Supports parallel processing of independent projects.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator
from urllib.parse import quote

from .config import ConfigError, InventoryConfig
from .conflicts import ConflictIndex
from .crawler import ResourceCrawler
from .gitlab_client import DataShapeError, FetchesPages, GitLabClient
from .rate_limiting import RateLimiter
from .schema import Project, ProjectStats, decode_group, decode_project, stats_columns
from .sink import StatsSink, write_conflict_report
from .utils import ProgressTracker, now_iso, output_paths, read_group_list
from .visitor import ProjectVisitor

logger = logging.getLogger(__name__)

GROUPS_PARAMS = {"all_available": "true", "order_by": "path", "sort": "asc"}
PROJECTS_PARAMS = {"include_subgroups": "false", "with_shared": "false", "order_by": "path", "sort": "asc"}


@dataclass(frozen=True)
class WalkTarget:
    """Which groups to walk: one group, an explicit list, or every group on the instance."""
    groups: tuple[str, ...] = ()
    all_groups: bool = False

    @classmethod
    def single(cls, group: str) -> "WalkTarget":
        return cls(groups=(group,))

    @classmethod
    def from_list(cls, groups: list[str]) -> "WalkTarget":
        return cls(groups=tuple(groups))

    @classmethod
    def everything(cls) -> "WalkTarget":
        return cls(all_groups=True)


@dataclass
class WalkSummary:
    """Counters for one walk."""
    groups: int = 0
    projects: int = 0
    failed_crawls: int = 0
    failed_groups: list[str] = field(default_factory=list)


class GroupWalker:
    """
    Walk groups -> projects -> ProjectVisitor.

    The sink and the conflict index are the only state shared between
    project visits; both serialise their own writes, and rows are handed to
    them from the walking thread in listing order.
    """

    def __init__(
        self,
        fetcher: FetchesPages,
        visitor: ProjectVisitor,
        sink: StatsSink,
        conflicts: ConflictIndex,
        workers: int = 1,
        per_page: int = 100,
    ):
        self.crawler = ResourceCrawler(fetcher, per_page=per_page)
        self.visitor = visitor
        self.sink = sink
        self.conflicts = conflicts
        self.workers = max(1, workers)
        self.progress = ProgressTracker()
        self.summary = WalkSummary()
        self._summary_lock = Lock()

    def run(self, target: WalkTarget) -> WalkSummary:
        """
        Walk every group of ``target`` to completion.

        Args:
            target: Groups to inventory

        Returns:
            WalkSummary for the run
        """
        self.summary = WalkSummary()
        failures_before = self.visitor.failures

        if self.workers > 1:
            logger.info(f"Visiting projects with {self.workers} workers")
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                for group in self._groups(target):
                    self._walk_group(group, executor)
        else:
            for group in self._groups(target):
                self._walk_group(group, None)

        self.summary.failed_crawls += self.visitor.failures - failures_before
        logger.info(self.progress.summary())
        return self.summary

    def _groups(self, target: WalkTarget) -> Iterator[str]:
        if not target.all_groups:
            yield from target.groups
            return

        result = self.crawler.collect("/groups", params=GROUPS_PARAMS)
        if not result.ok:
            self.summary.failed_crawls += 1
            logger.error(f"Listing groups failed with status {result.status}: {result.error}")
        logger.info(f"Found {len(result.value)} groups on the instance")
        for item in result.value:
            try:
                yield decode_group(item).path
            except DataShapeError as e:
                self.summary.failed_crawls += 1
                logger.warning(f"Skipping group entry: {e}")

    def _projects(self, group: str) -> list[Project] | None:
        endpoint = f"/groups/{quote(group, safe='')}/projects"
        result = self.crawler.collect(endpoint, params=PROJECTS_PARAMS)
        if not result.ok:
            self.summary.failed_crawls += 1
            self.summary.failed_groups.append(group)
            logger.warning(f"{group}: listing projects failed with status {result.status}: {result.error}")
            return None

        projects = []
        for item in result.value:
            try:
                projects.append(decode_project(item, group))
            except DataShapeError as e:
                self.summary.failed_crawls += 1
                logger.warning(f"{group}: skipping project entry: {e}")
        return projects

    def _walk_group(self, group: str, executor: ThreadPoolExecutor | None) -> None:
        projects = self._projects(group)
        self.summary.groups += 1
        if projects is None:
            return

        self.progress.start_group(group, len(projects))
        if executor is None:
            for project in projects:
                self._record(project, self._visit(project))
        else:
            futures = [executor.submit(self._visit, project) for project in projects]
            try:
                for project, future in zip(projects, futures):
                    self._record(project, future.result())
            except BaseException:
                # Fatal (sink failure, interrupt): drop visits not yet started
                for f in futures:
                    f.cancel()
                raise
        self.progress.complete_group()

    def _record(self, project: Project, stats: ProjectStats | None) -> None:
        if stats is not None:
            self.sink.append(stats)
            self.conflicts.record(project.name, project.group)
            self.summary.projects += 1
        self.progress.complete_project(f"{project.group}/{project.name}")

    def _visit(self, project: Project) -> ProjectStats | None:
        try:
            return self.visitor.visit(project)
        except Exception as e:
            with self._summary_lock:
                self.summary.failed_crawls += 1
            logger.exception(f"{project.group}/{project.name}: unexpected error while visiting: {e}")
            return None


class InventoryOrchestrator:
    """
    Orchestrates a complete inventory run.

    Validates credentials, opens the outputs, runs the GroupWalker and
    writes the conflict report.
    """

    def __init__(self, config: InventoryConfig, client: GitLabClient | None = None):
        """
        Initialize the orchestrator.

        Args:
            config: Inventory configuration
            client: Pre-built client (tests); one is created from config otherwise
        """
        self.config = config
        self.client = client
        self._owns_client = client is None
        self.started_at: str = ""
        self.finished_at: str = ""

    def _target(self) -> WalkTarget:
        if self.config.all_groups:
            return WalkTarget.everything()
        if self.config.groups_file:
            try:
                groups = read_group_list(self.config.groups_file)
            except OSError as e:
                raise ConfigError(f"Cannot read groups file {self.config.groups_file}: {e}") from e
            if not groups:
                raise ConfigError(f"Groups file {self.config.groups_file} lists no groups")
            return WalkTarget.from_list(groups)
        return WalkTarget.single(self.config.group)

    def _initialize(self) -> GitLabClient:
        if self.client is None:
            self.client = GitLabClient(
                base_url=self.config.gitlab_base_url,
                token=self.config.gitlab_token,
                timeout=self.config.timeout,
                connect_timeout=self.config.connect_timeout,
                max_retries=self.config.max_retries,
                verify_ssl=self.config.verify_ssl,
                max_concurrent_requests=self.config.max_concurrent_requests,
                rate_limiter=RateLimiter("gitlab"),
            )
        return self.client

    def run(self) -> dict:
        """
        Run the inventory.

        Returns:
            Run metadata: timestamps, output paths and summary counters

        Raises:
            ConfigError: Unusable target (e.g. unreadable groups file)
            AuthError: The token was rejected
            SinkError: An output file could not be written
        """
        self.started_at = now_iso()
        target = self._target()
        client = self._initialize()

        try:
            if target.all_groups:
                logger.info(f"Starting inventory of ALL groups at {self.config.gitlab_base_url}")
            else:
                logger.info(
                    f"Starting inventory of {', '.join(target.groups)} at {self.config.gitlab_base_url}"
                )
            client.check_auth()

            stats_path, conflicts_path = output_paths(self.config.output_dir, self.config.target_label)
            flags = self.config.flags
            columns = stats_columns(flags.notes, flags.commit_comments, flags.repo_size)
            conflicts = ConflictIndex()

            with StatsSink.open(stats_path, columns) as sink:
                sink.write_header()
                visitor = ProjectVisitor(client, flags, per_page=self.config.per_page)
                walker = GroupWalker(
                    client,
                    visitor,
                    sink,
                    conflicts,
                    workers=self.config.workers,
                    per_page=self.config.per_page,
                )
                summary = walker.run(target)

            conflict_count = write_conflict_report(conflicts_path, conflicts.report())
            self.finished_at = now_iso()

            calls = client.stats
            logger.info(
                f"API calls: {calls.total_calls} total, {calls.successful_calls} ok, "
                f"{calls.retried_calls} retried, {calls.failed_calls} failed"
            )
            rate_limit = client.rate_limiter.get_status()
            logger.debug(f"Rate limit at end of run: {rate_limit}")
            return {
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "base_url": self.config.gitlab_base_url,
                "stats_path": str(stats_path),
                "conflicts_path": str(conflicts_path),
                "groups": summary.groups,
                "projects": summary.projects,
                "conflicts": conflict_count,
                "errors": summary.failed_crawls,
                "rate_limit": rate_limit,
            }
        finally:
            self._cleanup()

    def _cleanup(self) -> None:
        """Cleanup resources."""
        if self.client and self._owns_client:
            self.client.close()
            self.client = None


def run_inventory(config: InventoryConfig) -> dict:
    """
    Convenience function to run an inventory.

    Args:
        config: Inventory configuration

    Returns:
        Run metadata dictionary
    """
    orchestrator = InventoryOrchestrator(config)
    return orchestrator.run()
