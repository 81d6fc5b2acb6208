"""
Utility functions for the Inventory Agent.

Common helpers for time, output naming, unit conversion and progress.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from pathlib import Path


def now_iso() -> str:
    """Get current time as ISO8601 string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def bytes_to_kb(size_bytes: int) -> int:
    """Convert bytes to whole kilobytes, rounding down (1023 bytes is 0 KB)."""
    if size_bytes < 0:
        raise ValueError(f"size cannot be negative: {size_bytes}")
    return size_bytes // 1024


def _slug(value: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "-", value).strip("-") or "run"


def output_paths(
    output_dir: str | Path,
    target_label: str,
    when: datetime | None = None,
) -> tuple[Path, Path]:
    """
    Build timestamped paths for the stats and conflict reports.

    Args:
        output_dir: Directory the reports go into
        target_label: Group name, "all-groups" or the groups file stem
        when: Timestamp to embed (defaults to now, local time)

    Returns:
        (stats_path, conflicts_path)
    """
    stamp = (when or datetime.now()).strftime("%Y%m%d-%H%M%S")
    label = _slug(target_label)
    base = Path(output_dir)
    return (
        base / f"gitlab-stats-{label}-{stamp}.csv",
        base / f"gitlab-conflicts-{label}-{stamp}.csv",
    )


def read_group_list(path: str | Path) -> list[str]:
    """
    Read group paths from a text file, one per line.

    Blank lines and lines starting with '#' are skipped; duplicates are
    dropped keeping the first occurrence.
    """
    groups: list[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            name = line.strip()
            if not name or name.startswith("#"):
                continue
            if name not in groups:
                groups.append(name)
    return groups


class ProgressTracker:
    """Track and log inventory progress."""

    def __init__(self) -> None:
        self.total_groups = 0
        self.completed_groups = 0
        self.completed_projects = 0
        self.current_group: str | None = None
        self.logger = logging.getLogger("inventory_agent.progress")

    def start_group(self, group_path: str, project_count: int) -> None:
        """Mark start of group processing."""
        self.current_group = group_path
        self.total_groups += 1
        self.logger.info(f"Processing group {group_path} ({project_count} projects)")

    def complete_group(self) -> None:
        """Mark group as completed."""
        self.completed_groups += 1
        self.logger.info(f"Completed group {self.completed_groups}: {self.current_group}")

    def complete_project(self, project_path: str) -> None:
        """Mark project as completed."""
        self.completed_projects += 1
        self.logger.debug(f"  Completed project {project_path}")
        if self.completed_projects % 10 == 0:
            self.logger.info(f"Progress: {self.completed_projects} projects")

    def summary(self) -> str:
        """Get progress summary string."""
        return f"Completed {self.completed_groups} groups, {self.completed_projects} projects"
