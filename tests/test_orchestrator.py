"""End-to-end tests for the group walk, the CSV outputs and the run orchestrator."""

import logging
import threading
import time

import pytest

from conftest import FakeFetcher, issue, project_item
from inventory_agent.config import InventoryConfig
from inventory_agent.conflicts import ConflictIndex
from inventory_agent.gitlab_client import AuthError
from inventory_agent.orchestrator import GroupWalker, InventoryOrchestrator, WalkTarget
from inventory_agent.schema import ProjectStats, stats_columns
from inventory_agent.sink import SinkError, StatsSink, write_conflict_report
from inventory_agent.visitor import AggregationFlags, ProjectVisitor


def walk(fetcher, tmp_path, target, flags=None, workers=1):
    flags = flags or AggregationFlags()
    conflicts = ConflictIndex()
    path = tmp_path / "stats.csv"
    columns = stats_columns(flags.notes, flags.commit_comments, flags.repo_size)
    with StatsSink.open(path, columns) as sink:
        sink.write_header()
        walker = GroupWalker(
            fetcher,
            ProjectVisitor(fetcher, flags, per_page=3),
            sink,
            conflicts,
            workers=workers,
            per_page=3,
        )
        summary = walker.run(target)
    return path.read_text(encoding="utf-8").splitlines(), conflicts, summary


class TestGroupWalker:

    def test_acme_scenario(self, acme_fetcher, tmp_path):
        lines, conflicts, summary = walk(acme_fetcher, tmp_path, WalkTarget.single("acme"))

        assert lines == [
            "group,project,issues,merge_requests,fork_parent",
            "acme,widgets,5,2,",
            "acme,gadgets,0,1,",
        ]
        assert summary.groups == 1
        assert summary.projects == 2
        assert summary.failed_crawls == 0
        assert conflicts.report() == []

    def test_issue_pages_fetched_once_each(self, acme_fetcher, tmp_path):
        walk(acme_fetcher, tmp_path, WalkTarget.single("acme"))

        assert acme_fetcher.calls_to("/projects/1/issues") == 2

    def test_conflict_across_groups(self, acme_fetcher, tmp_path):
        acme_fetcher.add_collection("/groups/beta/projects", [project_item(3, "widgets", fork_parent="acme/widgets")])
        acme_fetcher.add_collection("/projects/3/issues", [issue(1)])
        acme_fetcher.add_collection("/projects/3/merge_requests", [])

        lines, conflicts, _ = walk(acme_fetcher, tmp_path, WalkTarget.from_list(["acme", "beta"]))

        assert lines[-1] == "beta,widgets,1,0,acme/widgets"
        report_path = tmp_path / "conflicts.csv"
        write_conflict_report(report_path, conflicts.report(), header=False)
        assert report_path.read_text(encoding="utf-8").splitlines() == ["2,widgets,acme beta"]

    def test_merge_request_404_does_not_stop_the_walk(self, acme_fetcher, tmp_path, caplog):
        acme_fetcher.add_failure("/projects/1/merge_requests", 404)

        with caplog.at_level(logging.WARNING):
            lines, _, summary = walk(acme_fetcher, tmp_path, WalkTarget.single("acme"))

        assert lines[1:] == ["acme,widgets,5,,", "acme,gadgets,0,1,"]
        assert summary.failed_crawls == 1
        assert any(
            "acme/widgets" in record.getMessage() and "merge_requests" in record.getMessage()
            for record in caplog.records
        )

    def test_notes_columns_when_enabled(self, fetcher, tmp_path):
        fetcher.add_collection("/groups/acme/projects", [project_item(1, "widgets")])
        fetcher.add_collection("/projects/1/issues", [issue(1, notes=3), issue(2, notes=1)])
        fetcher.add_collection("/projects/1/merge_requests", [issue(1, notes=7)])

        lines, _, _ = walk(fetcher, tmp_path, WalkTarget.single("acme"), AggregationFlags(notes=True))

        assert lines == [
            "group,project,issues,merge_requests,issue_notes,merge_request_notes,fork_parent",
            "acme,widgets,2,1,4,7,",
        ]

    def test_failed_group_listing_moves_on(self, acme_fetcher, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            lines, _, summary = walk(acme_fetcher, tmp_path, WalkTarget.from_list(["missing", "acme"]))

        assert len(lines) == 3
        assert summary.groups == 2
        assert summary.failed_groups == ["missing"]
        assert "missing" in caplog.text

    def test_all_groups_mode_lists_groups_first(self, acme_fetcher, tmp_path):
        acme_fetcher.add_collection("/groups", [{"id": 10, "full_path": "acme"}, {"id": 11, "full_path": "empty"}])
        acme_fetcher.add_collection("/groups/empty/projects", [])

        lines, _, summary = walk(acme_fetcher, tmp_path, WalkTarget.everything())

        assert acme_fetcher.calls[0] == ("/groups", None)
        assert summary.groups == 2
        assert len(lines) == 3

    def test_subgroup_path_is_url_encoded(self, fetcher, tmp_path):
        fetcher.add_collection("/groups/acme%2Ftools/projects", [])

        _, _, summary = walk(fetcher, tmp_path, WalkTarget.single("acme/tools"))

        assert summary.failed_groups == []

    def test_parallel_workers_keep_listing_order(self, fetcher, tmp_path):
        names = [f"p{i}" for i in range(8)]
        fetcher.add_collection("/groups/acme/projects", [project_item(i, name) for i, name in enumerate(names)])
        for i in range(8):
            fetcher.add_collection(f"/projects/{i}/issues", [issue(n) for n in range(i)])
            fetcher.add_collection(f"/projects/{i}/merge_requests", [])

        lines, _, summary = walk(fetcher, tmp_path, WalkTarget.single("acme"), workers=4)

        assert [line.split(",")[1] for line in lines[1:]] == names
        assert [int(line.split(",")[2]) for line in lines[1:]] == list(range(8))
        assert summary.projects == 8

    def test_malformed_project_entry_is_skipped(self, fetcher, tmp_path):
        fetcher.add_collection("/groups/acme/projects", [{"path": "no-id"}, project_item(2, "gadgets")])
        fetcher.add_collection("/projects/2/issues", [])
        fetcher.add_collection("/projects/2/merge_requests", [])

        lines, _, summary = walk(fetcher, tmp_path, WalkTarget.single("acme"))

        assert lines[1:] == ["acme,gadgets,0,0,"]
        assert summary.failed_crawls == 1

    def test_progress_summary_logged(self, acme_fetcher, tmp_path, caplog):
        with caplog.at_level(logging.INFO):
            walk(acme_fetcher, tmp_path, WalkTarget.single("acme"))

        assert "Completed 1 groups, 2 projects" in caplog.text


class SlowVisitor:
    """Visitor that takes a moment per project and counts how many it started."""

    def __init__(self):
        self.failures = 0
        self.visited = 0
        self._lock = threading.Lock()

    def visit(self, project):
        with self._lock:
            self.visited += 1
        time.sleep(0.02)
        return ProjectStats(project.group, project.name, issues=0, merge_requests=0)


class BrokenSink:
    def append(self, stats):
        raise SinkError("disk full")


class TestFatalErrors:

    def test_sink_failure_stops_parallel_walk(self, fetcher):
        fetcher.add_collection("/groups/acme/projects", [project_item(i, f"p{i}") for i in range(40)])
        visitor = SlowVisitor()
        walker = GroupWalker(fetcher, visitor, BrokenSink(), ConflictIndex(), workers=2)

        with pytest.raises(SinkError):
            walker.run(WalkTarget.single("acme"))

        # only the visits already running when the sink failed get to finish
        assert visitor.visited <= 4

    def test_sink_failure_stops_sequential_walk(self, fetcher):
        fetcher.add_collection("/groups/acme/projects", [project_item(i, f"p{i}") for i in range(5)])
        visitor = SlowVisitor()
        walker = GroupWalker(fetcher, visitor, BrokenSink(), ConflictIndex())

        with pytest.raises(SinkError):
            walker.run(WalkTarget.single("acme"))

        assert visitor.visited == 1


class TestInventoryOrchestrator:

    @pytest.fixture
    def config(self, tmp_path):
        return InventoryConfig(
            gitlab_base_url="https://gitlab.example.com",
            gitlab_token="test-token",
            group="acme",
            output_dir=str(tmp_path / "out"),
            per_page=3,
        )

    def test_run_writes_both_reports(self, config, acme_fetcher):
        result = InventoryOrchestrator(config, client=acme_fetcher).run()

        stats_lines = open(result["stats_path"], encoding="utf-8").read().splitlines()
        conflict_lines = open(result["conflicts_path"], encoding="utf-8").read().splitlines()
        assert stats_lines[1:] == ["acme,widgets,5,2,", "acme,gadgets,0,1,"]
        assert conflict_lines == ["conflict_count,project_name,group_names"]
        assert result["projects"] == 2
        assert result["conflicts"] == 0
        assert "gitlab-stats-acme-" in result["stats_path"]
        assert result["rate_limit"]["name"] == "fake"

    def test_rejected_token_is_fatal_before_output(self, config, tmp_path):
        fake = FakeFetcher()
        fake.auth_ok = False

        with pytest.raises(AuthError):
            InventoryOrchestrator(config, client=fake).run()

        assert fake.calls == []
        assert not (tmp_path / "out").exists()

    def test_groups_file_target(self, config, acme_fetcher, tmp_path):
        groups_file = tmp_path / "groups.txt"
        groups_file.write_text("# migration wave 1\nacme\n\nbeta\n", encoding="utf-8")
        acme_fetcher.add_collection("/groups/beta/projects", [project_item(3, "widgets")])
        acme_fetcher.add_collection("/projects/3/issues", [])
        acme_fetcher.add_collection("/projects/3/merge_requests", [])
        config.group = None
        config.groups_file = str(groups_file)

        result = InventoryOrchestrator(config, client=acme_fetcher).run()

        conflict_lines = open(result["conflicts_path"], encoding="utf-8").read().splitlines()
        assert conflict_lines[1:] == ["2,widgets,acme beta"]
        assert result["groups"] == 2
        assert "gitlab-conflicts-groups-" in result["conflicts_path"]
