"""
CSV output for project statistics and name conflicts.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from threading import Lock
from typing import IO, Iterable, Sequence

from .schema import CONFLICT_COLUMNS, ConflictEntry, ProjectStats

logger = logging.getLogger(__name__)


class SinkError(Exception):
    """An output file could not be created or written."""


class StatsSink:
    """
    Append-only CSV writer, one row per completed project.

    Every row is flushed as soon as it is written, so a partial run still
    leaves the projects finished so far on disk.

    Usage:
        with StatsSink.open(path, stats_columns()) as sink:
            sink.write_header()
            sink.append(stats)
    """

    def __init__(self, handle: IO[str], columns: Sequence[str], path: Path | None = None):
        self.path = path
        self.columns = tuple(columns)
        self.rows_written = 0
        self._handle = handle
        self._writer = csv.writer(handle, lineterminator="\n")
        self._lock = Lock()

    @classmethod
    def open(cls, path: str | Path, columns: Sequence[str]) -> "StatsSink":
        """
        Create the output file.

        Raises:
            SinkError: If the file (or its directory) cannot be created
        """
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(path, "w", encoding="utf-8", newline="")
        except OSError as e:
            raise SinkError(f"Cannot create output file {path}: {e}") from e
        logger.info(f"Writing project statistics to {path}")
        return cls(handle, columns, path)

    def write_header(self) -> None:
        self._write(self.columns)

    def append(self, stats: ProjectStats) -> None:
        """Write one project's record and flush it."""
        self._write(stats.to_row(self.columns))
        self.rows_written += 1

    def _write(self, row: Iterable[str]) -> None:
        with self._lock:
            try:
                self._writer.writerow(row)
                self._handle.flush()
            except OSError as e:
                raise SinkError(f"Cannot write to {self.path or 'output'}: {e}") from e

    def close(self) -> None:
        self._handle.close()

    def __enter__(self) -> "StatsSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def write_conflict_report(path: str | Path, entries: Iterable[ConflictEntry], header: bool = True) -> int:
    """
    Write the name conflict report.

    Each row is ``count,name,"group1 group2 ..."``.

    Returns:
        Number of conflict rows written

    Raises:
        SinkError: If the file cannot be written
    """
    path = Path(path)
    written = 0
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f, lineterminator="\n")
            if header:
                writer.writerow(CONFLICT_COLUMNS)
            for entry in entries:
                writer.writerow(entry.to_row())
                written += 1
    except OSError as e:
        raise SinkError(f"Cannot write conflict report {path}: {e}") from e
    logger.info(f"Wrote {written} name conflicts to {path}")
    return written
