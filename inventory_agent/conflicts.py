"""
Cross-group project name collisions.

Names are compared exactly as GitLab returns them: "Widgets" and "widgets"
do not collide. A collision can only be known once every group has been
walked, so one index lives for the whole run.
"""

from __future__ import annotations

import logging
from threading import Lock

from .schema import ConflictEntry

logger = logging.getLogger(__name__)


class ConflictIndex:
    """Accumulates project name -> owning groups across an entire run."""

    def __init__(self) -> None:
        self._entries: dict[str, ConflictEntry] = {}
        self._lock = Lock()

    def record(self, name: str, group: str) -> None:
        """Note that ``group`` owns a project called ``name``."""
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                self._entries[name] = ConflictEntry(project_name=name, groups=[group])
            elif group not in entry.groups:
                entry.groups.append(group)
                logger.debug(f"Name collision: {name} now in {entry.count} groups")

    def report(self) -> list[ConflictEntry]:
        """Entries seen in more than one group, sorted by project name."""
        with self._lock:
            return [
                ConflictEntry(project_name=entry.project_name, groups=list(entry.groups))
                for name, entry in sorted(self._entries.items())
                if entry.count > 1
            ]

    def __len__(self) -> int:
        return len(self._entries)
