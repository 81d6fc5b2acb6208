"""
Typed records for the inventory run and decoders from GitLab JSON.

API items are decoded once, at the boundary, into the dataclasses below;
nothing downstream touches raw response dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft7Validator

from .gitlab_client import DataShapeError

# Column names for the optional aggregation flags, in output order.
NOTES_COLUMNS = ("issue_notes", "merge_request_notes")
COMMIT_COMMENTS_COLUMN = "commit_comments"
REPO_SIZE_COLUMN = "repo_size_kb"
BASE_COLUMNS = ("group", "project", "issues", "merge_requests")
FORK_PARENT_COLUMN = "fork_parent"

CONFLICT_COLUMNS = ("conflict_count", "project_name", "group_names")


@dataclass(frozen=True)
class Group:
    """A GitLab group; ``path`` is both identifier and display name."""
    path: str


@dataclass(frozen=True)
class Project:
    """A project listed under a group."""
    id: int
    name: str
    group: str
    fork_parent: str | None = None


@dataclass
class ProjectStats:
    """Aggregated counters for one project. Optional fields stay None unless their flag ran."""
    group: str
    project: str
    issues: int | None = None
    merge_requests: int | None = None
    issue_notes: int | None = None
    merge_request_notes: int | None = None
    commit_comments: int | None = None
    repo_size_kb: int | None = None
    fork_parent: str | None = None

    def to_row(self, columns: tuple[str, ...] | list[str]) -> list[str]:
        """Render the record for the given header; None becomes an empty cell."""
        row = []
        for column in columns:
            value = getattr(self, column)
            row.append("" if value is None else str(value))
        return row


@dataclass
class ConflictEntry:
    """A project name seen under more than one group."""
    project_name: str
    groups: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.groups)

    def to_row(self) -> list[str]:
        return [str(self.count), self.project_name, " ".join(self.groups)]


def stats_columns(notes: bool = False, commit_comments: bool = False, repo_size: bool = False) -> tuple[str, ...]:
    """
    Compose the stats CSV header for the enabled aggregation flags.

    The fork parent column is always last and always present.
    """
    columns = list(BASE_COLUMNS)
    if notes:
        columns.extend(NOTES_COLUMNS)
    if commit_comments:
        columns.append(COMMIT_COMMENTS_COLUMN)
    if repo_size:
        columns.append(REPO_SIZE_COLUMN)
    columns.append(FORK_PARENT_COLUMN)
    return tuple(columns)


# Minimal shapes of the listing items the walker relies on.
GROUP_ITEM_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "GitLab group listing item",
    "type": "object",
    "anyOf": [{"required": ["full_path"]}, {"required": ["path"]}],
    "properties": {
        "full_path": {"type": "string", "minLength": 1},
        "path": {"type": "string", "minLength": 1},
    },
}

PROJECT_ITEM_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "GitLab project listing item",
    "type": "object",
    "required": ["id"],
    "anyOf": [{"required": ["path"]}, {"required": ["name"]}],
    "properties": {
        "id": {"type": "integer"},
        "path": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "forked_from_project": {
            "type": ["object", "null"],
            "properties": {"path_with_namespace": {"type": ["string", "null"]}},
        },
    },
}

_GROUP_VALIDATOR = Draft7Validator(GROUP_ITEM_SCHEMA)
_PROJECT_VALIDATOR = Draft7Validator(PROJECT_ITEM_SCHEMA)


def _validate(validator: Draft7Validator, item: Any, what: str) -> None:
    """Raise DataShapeError listing every schema violation of ``item``."""
    errors = list(validator.iter_errors(item))
    if not errors:
        return
    messages = []
    for error in errors:
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
        messages.append(f"{path}: {error.message}")
    raise DataShapeError(f"malformed {what}: {'; '.join(messages)}")


def decode_group(item: Any) -> Group:
    """Decode one element of the /groups listing."""
    _validate(_GROUP_VALIDATOR, item, "group entry")
    return Group(path=item.get("full_path") or item["path"])


def decode_project(item: Any, group: str) -> Project:
    """Decode one element of a group's /projects listing."""
    _validate(_PROJECT_VALIDATOR, item, "project entry")
    parent = item.get("forked_from_project") or {}
    return Project(
        id=item["id"],
        name=item.get("path") or item["name"],
        group=group,
        fork_parent=parent.get("path_with_namespace") or None,
    )


def repository_size(project: Any) -> int:
    """
    Extract ``statistics.repository_size`` in bytes from a project resource.

    Raises:
        DataShapeError: If the statistics block is missing or the size is not a whole number
    """
    statistics = project.get("statistics") if isinstance(project, dict) else None
    if not isinstance(statistics, dict):
        raise DataShapeError("project has no statistics block (token may lack reporter access)")
    size = statistics.get("repository_size")
    if isinstance(size, bool):
        raise DataShapeError(f"repository_size is not numeric: {size!r}")
    if isinstance(size, int):
        if size < 0:
            raise DataShapeError(f"repository_size is negative: {size}")
        return size
    if isinstance(size, str) and size.isdigit():
        return int(size)
    raise DataShapeError(f"repository_size is not numeric: {size!r}")
