"""
Data Transfer Module

This module coordinates a copy job: it counts the source rows of every
selected table, bulk loads the tables one at a time in order, and turns the
loader's row-count notifications into two progress percentages (current
table, and whole job) for the host.

Progress reporting never stops a copy. If the progress sink raises, reporting
is switched off for the rest of the job and the load carries on.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence
import logging
import threading
import time

from sql_data_copier.bulk_loader import BulkCopyOptions, BulkLoader
from sql_data_copier.dependency_resolver import resolve_transfer_order
from sql_data_copier.exceptions import ReportingError
from sql_data_copier.odbc_helper import OdbcConnectionHelper
from sql_data_copier.progress import ProgressSink, overall_record, percent, table_record
from sql_data_copier.row_counter import RowCounter
from sql_data_copier.table_config import TableIdentity, TableRef, to_table_identity
from sql_data_copier.table_selection import build_table_set

logger = logging.getLogger(__name__)


class JobPhase(str, Enum):
    NOT_STARTED = "not_started"
    COUNTING = "counting"
    COPYING = "copying"
    FINISHED = "finished"
    FAILED = "failed"


class TransferJob:
    """
    State of one copy job.

    Owned by the TransferCoordinator. Row-count notifications may arrive
    from the loader's own thread, so counter updates and the sums used for
    percentages are taken under a lock.
    """

    def __init__(self, tables: Sequence[TableIdentity]):
        self.tables: List[TableIdentity] = list(tables)
        self.row_counts: Dict[TableIdentity, int] = {}
        self.copy_counts: Dict[TableIdentity, int] = {t: 0 for t in self.tables}
        self.current_table: Optional[TableIdentity] = None
        self.phase = JobPhase.NOT_STARTED
        self.reporting_disabled = False
        self._lock = threading.Lock()

    def record_rows_copied(self, table: TableIdentity, cumulative: int) -> None:
        """Store a table's cumulative copied count. Counts never go down."""
        with self._lock:
            if cumulative > self.copy_counts.get(table, 0):
                self.copy_counts[table] = cumulative

    def table_percent(self, table: TableIdentity) -> int:
        with self._lock:
            return percent(self.copy_counts.get(table, 0), self.row_counts.get(table, 0))

    def global_percent(self) -> int:
        with self._lock:
            return percent(sum(self.copy_counts.values()), sum(self.row_counts.values()))

    def disable_reporting(self) -> bool:
        """Switch reporting off. Returns True only for the call that switched it."""
        with self._lock:
            if self.reporting_disabled:
                return False
            self.reporting_disabled = True
            return True

    @property
    def total_rows(self) -> int:
        with self._lock:
            return sum(self.row_counts.values())


class ProgressCallback:
    """Row-count notification handler bound to one job and one table."""

    def __init__(self, job: TransferJob, table: TableIdentity, sink: Optional[ProgressSink]):
        self.job = job
        self.table = table
        self.sink = sink

    def __call__(self, rows_copied: int) -> None:
        self.job.record_rows_copied(self.table, rows_copied)

        if self.sink is None or self.job.reporting_disabled:
            return

        try:
            self.sink(overall_record(self.job.global_percent()))
            self.sink(table_record(self.table.key, self.job.table_percent(self.table)))
        except Exception as e:
            if self.job.disable_reporting():
                error = ReportingError(f"Progress sink failed: {e}")
                logger.warning(f"{error}; progress reporting disabled for the rest of the job")


@dataclass
class TransferSummary:
    """Outcome of a finished copy job."""

    tables: List[str] = field(default_factory=list)
    rows_copied: Dict[str, int] = field(default_factory=dict)
    source_row_counts: Dict[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def total_rows_copied(self) -> int:
        return sum(self.rows_copied.values())


class TransferCoordinator:
    """Copy a list of tables in order, reporting progress along the way."""

    def __init__(
        self,
        source_helper: OdbcConnectionHelper,
        destination_helper: OdbcConnectionHelper,
        loader: Optional[BulkLoader] = None,
        options: Optional[BulkCopyOptions] = None,
        progress_sink: Optional[ProgressSink] = None,
        row_counter: Optional[RowCounter] = None,
    ):
        """
        Args:
            source_helper: Query helper for the source database
            destination_helper: Query helper for the destination database
            loader: Bulk loader (defaults to a pyodbc BulkLoader)
            options: Copy-mode flags passed to the loader for every table
            progress_sink: Receives progress records; None to skip reporting
            row_counter: Source row counter (defaults to RowCounter(source))
        """
        self.source = source_helper
        self.destination = destination_helper
        self.loader = loader or BulkLoader(source_helper, destination_helper)
        self.options = options or BulkCopyOptions()
        self.progress_sink = progress_sink
        self.row_counter = row_counter or RowCounter(source_helper)
        self.job: Optional[TransferJob] = None

    def run(self, tables: Sequence[TableRef]) -> TransferSummary:
        """
        Copy the given tables, strictly one after another, in list order.

        Args:
            tables: Ordered tables to copy

        Returns:
            Summary of the finished job

        Raises:
            DataAccessError: If a table can't be counted
            TransferError: If a table load fails
        """
        job = TransferJob([to_table_identity(t) for t in tables])
        self.job = job
        start_time = time.time()
        summary = TransferSummary(tables=[t.key for t in job.tables])

        try:
            job.phase = JobPhase.COUNTING
            for table in job.tables:
                job.current_table = table
                job.row_counts[table] = self.row_counter.count(table)
                summary.source_row_counts[table.key] = job.row_counts[table]

            logger.info(f"Copying {len(job.tables)} tables, {job.total_rows:,} rows in total")

            job.phase = JobPhase.COPYING
            for index, table in enumerate(job.tables, start=1):
                job.current_table = table
                logger.info(
                    f"[{index}/{len(job.tables)}] Copying {table} "
                    f"({job.row_counts[table]:,} rows)"
                )
                callback = ProgressCallback(job, table, self.progress_sink)
                copied = self.loader.load(table, self.options, callback)
                job.record_rows_copied(table, copied)
                summary.rows_copied[table.key] = copied

        except Exception as e:
            job.phase = JobPhase.FAILED
            table = job.current_table
            logger.error(f"Copy job failed on {table}: {e}")
            raise

        job.phase = JobPhase.FINISHED
        job.current_table = None
        summary.elapsed_seconds = time.time() - start_time
        logger.info(
            f"Copy job finished: {len(summary.tables)} tables, "
            f"{summary.total_rows_copied:,} rows in {summary.elapsed_seconds:.1f}s"
        )
        return summary


def copy_sql_data(
    source_connection_string: str,
    destination_connection_string: str,
    tables: Optional[Sequence[TableRef]] = None,
    excluded_tables: Optional[Sequence[TableRef]] = None,
    options: Optional[BulkCopyOptions] = None,
    progress_sink: Optional[ProgressSink] = None,
) -> TransferSummary:
    """
    Copy table data from a source database to a destination database.

    When no tables are given, every table present in both databases is
    copied in foreign-key dependency order.

    Args:
        source_connection_string: ODBC connection string of the source
        destination_connection_string: ODBC connection string of the destination
        tables: Tables to copy in this exact order (optional)
        excluded_tables: Tables to leave out (case-insensitive, optional)
        options: Copy-mode flags
        progress_sink: Receives progress records

    Returns:
        Summary of the finished job
    """
    source = OdbcConnectionHelper(source_connection_string, name="source")
    destination = OdbcConnectionHelper(destination_connection_string, name="destination")

    # Fail before any table starts if either side is unreachable
    source.check_connection()
    destination.check_connection()

    selected = build_table_set(
        tables,
        excluded_tables,
        lambda: resolve_transfer_order(source, destination),
    )

    coordinator = TransferCoordinator(
        source,
        destination,
        options=options,
        progress_sink=progress_sink,
    )
    return coordinator.run(selected)
