"""
Tabular feeds of topics and subject identifiers.

Feeds are small CSV files with a header row.  Registration consumes the
subject feed sequentially (each record exactly once); later phases sample
registered subjects at random from the run cache instead.
"""

from __future__ import annotations

import csv
import threading
from collections.abc import Sequence
from pathlib import Path

from ingestion_perf.errors import DataError


def read_feed(path: Path, required_column: str) -> list[dict[str, str]]:
    """
    Load every row of a CSV feed.

    Args:
        path: CSV file with a header row.
        required_column: Column that must exist and be non-empty in every row.

    Returns:
        The rows as dictionaries, in file order.

    Raises:
        ValueError: If the column is missing or a row leaves it empty.
    """
    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        if reader.fieldnames is None or required_column not in reader.fieldnames:
            raise ValueError(f"Feed {path} has no '{required_column}' column")
        rows = [dict(row) for row in reader]

    for line_number, row in enumerate(rows, start=2):
        if not (row.get(required_column) or "").strip():
            raise ValueError(f"Feed {path} line {line_number}: empty '{required_column}'")
    return rows


def read_topics(path: Path) -> list[str]:
    """Return the topic names listed in a ``topic`` column feed."""
    return [row["topic"].strip() for row in read_feed(path, "topic")]


def read_subjects(path: Path, limit: int) -> list[dict[str, str]]:
    """
    Return the first *limit* rows of an ``externalId`` column feed.

    Raises:
        ValueError: If the feed holds fewer than *limit* subjects.
    """
    rows = read_feed(path, "externalId")
    if len(rows) < limit:
        raise ValueError(f"Feed {path} lists {len(rows)} subjects, {limit} requested")
    return rows[:limit]


class SequentialFeeder:
    """Hand out records in order, each at most once, across sessions."""

    def __init__(self, records: Sequence[dict[str, str]]):
        self._records = list(records)
        self._position = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def next(self) -> dict[str, str]:
        """
        Return the next unused record.

        Raises:
            DataError: If every record was already handed out.
        """
        with self._lock:
            if self._position >= len(self._records):
                raise DataError("Feed exhausted")
            record = self._records[self._position]
            self._position += 1
        return record

