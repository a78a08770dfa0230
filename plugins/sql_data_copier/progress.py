"""
Progress Reporting Module

Progress records sent from the copy job to the host, and the default sink
that writes them to the task log.
"""

from dataclasses import dataclass
from typing import Callable, Dict
import logging

logger = logging.getLogger(__name__)

OVERALL_ACTIVITY_ID = 1
TABLE_ACTIVITY_ID = 2


@dataclass(frozen=True)
class ProgressRecord:
    """One progress update for a channel (overall job, or current table)."""

    activity_id: int
    activity: str
    status_description: str
    percent_complete: int


ProgressSink = Callable[[ProgressRecord], None]


def percent(copied: int, total: int) -> int:
    """
    Whole percentage of rows copied, clamped to 0..100.

    A zero total means there is nothing to copy and counts as complete.
    Row counts come from statistics, so copied can exceed total.
    """
    if total <= 0:
        return 100
    return max(0, min(100, (copied * 100) // total))


def overall_record(percent_complete: int) -> ProgressRecord:
    return ProgressRecord(
        OVERALL_ACTIVITY_ID,
        "SQL Data Copy",
        "Copy progress for all data.",
        percent_complete,
    )


def table_record(table: str, percent_complete: int) -> ProgressRecord:
    return ProgressRecord(
        TABLE_ACTIVITY_ID,
        f"Copying {table}",
        "Copy progress for current table.",
        percent_complete,
    )


class LoggingProgressSink:
    """
    Write progress records to the log.

    Only logs when a channel's percentage or activity changes, so a long
    table doesn't produce one line per notification.
    """

    def __init__(self, log: logging.Logger = logger):
        self._log = log
        self._last: Dict[int, ProgressRecord] = {}

    def __call__(self, record: ProgressRecord) -> None:
        last = self._last.get(record.activity_id)
        if (
            last is not None
            and last.activity == record.activity
            and last.percent_complete == record.percent_complete
        ):
            return
        self._last[record.activity_id] = record
        self._log.info(f"{record.activity}: {record.percent_complete}%")
