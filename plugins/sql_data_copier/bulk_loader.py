"""
Bulk Loader Module

Streams the rows of one table from the source database into the same table
in the destination database.

Rows are read from a source cursor in batches and written with pyodbc's
fast_executemany. Each written slice is committed on its own, so a failure
leaves the rows committed so far in the destination; nothing is rolled back
across slices.

Copy modes (BulkCopyOptions):
- keep_identity: insert source identity values (SET IDENTITY_INSERT ON);
  otherwise the destination generates them
- keep_nulls: write NULLs as NULL; otherwise columns with a default get the
  default instead of NULL
- table_lock: insert WITH (TABLOCK)
- enable_streaming: read with fetchmany instead of loading the table in memory
- notify_after: call on_rows_copied every N rows with the cumulative count

Performance Options:
- BULK_COPY_BATCH_SIZE=N: rows fetched from the source per round trip
"""

from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple
import logging
import os
import time

import pyodbc

from sql_data_copier.exceptions import DatabaseConnectionError, TransferError
from sql_data_copier.odbc_helper import OdbcConnectionHelper
from sql_data_copier.table_config import TableIdentity, TableRef, quote_identifier, to_table_identity

logger = logging.getLogger(__name__)

DEFAULT_NOTIFY_AFTER = 2000

COLUMNS_QUERY = """
SELECT
    c.name AS column_name,
    c.is_identity,
    c.is_computed,
    TYPE_NAME(c.system_type_id) AS system_type,
    dc.definition AS default_value,
    c.max_length,
    c.precision,
    c.scale
FROM sys.columns c
LEFT JOIN sys.default_constraints dc
    ON c.object_id = dc.parent_object_id AND c.column_id = dc.parent_column_id
WHERE c.object_id = OBJECT_ID(?)
ORDER BY c.column_id
"""

# Server-generated column types that can't be inserted
_UNWRITABLE_TYPES = {'timestamp', 'rowversion'}

# Types whose declaration carries a length, precision or scale
_BYTE_LENGTH_TYPES = {'char', 'varchar', 'binary', 'varbinary'}
_UNICODE_LENGTH_TYPES = {'nchar', 'nvarchar'}
_DECIMAL_TYPES = {'decimal', 'numeric'}
_FRACTIONAL_SECONDS_TYPES = {'datetime2', 'time', 'datetimeoffset'}


def _get_batch_size() -> int:
    """Rows per source fetch from BULK_COPY_BATCH_SIZE (default 10000)."""
    return max(1, int(os.environ.get('BULK_COPY_BATCH_SIZE', '10000')))


@dataclass
class BulkCopyOptions:
    """Copy-mode flags for a bulk load. Defaults give a faithful data-level copy."""

    keep_identity: bool = True
    keep_nulls: bool = True
    table_lock: bool = False
    enable_streaming: bool = True
    notify_after: int = DEFAULT_NOTIFY_AFTER
    batch_size: int = field(default_factory=_get_batch_size)


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    is_identity: bool
    is_computed: bool
    system_type: str
    default_value: Optional[str]
    max_length: int = 0
    precision: int = 0
    scale: int = 0

    @property
    def declared_type(self) -> str:
        """
        Column type as written in DDL, e.g. nvarchar(50), decimal(18, 2), varchar(MAX).

        sys.columns reports max_length in bytes (-1 for MAX), so Unicode
        lengths are halved.
        """
        if self.system_type in _BYTE_LENGTH_TYPES:
            length = 'MAX' if self.max_length == -1 else str(self.max_length)
            return f"{self.system_type}({length})"
        if self.system_type in _UNICODE_LENGTH_TYPES:
            length = 'MAX' if self.max_length == -1 else str(self.max_length // 2)
            return f"{self.system_type}({length})"
        if self.system_type in _DECIMAL_TYPES:
            return f"{self.system_type}({self.precision}, {self.scale})"
        if self.system_type in _FRACTIONAL_SECONDS_TYPES:
            return f"{self.system_type}({self.scale})"
        return self.system_type


RowsCopiedCallback = Callable[[int], None]


def notify_slices(rows: Sequence, already_copied: int, notify_after: int) -> Iterator[Sequence]:
    """
    Split a batch so every slice ends on a notify_after boundary or at the batch end.

    Example with notify_after=2000 and 1500 rows already copied, a batch of
    3000 rows becomes slices of 500, 2000 and 500 rows.
    """
    if notify_after <= 0:
        if rows:
            yield rows
        return

    start = 0
    while start < len(rows):
        room = notify_after - ((already_copied + start) % notify_after)
        yield rows[start:start + room]
        start += room


class BulkLoader:
    """Copy whole tables from a source database to a destination database."""

    def __init__(self, source_helper: OdbcConnectionHelper, destination_helper: OdbcConnectionHelper):
        self.source = source_helper
        self.destination = destination_helper

    def _get_columns(self, helper: OdbcConnectionHelper, table: TableIdentity) -> List[ColumnInfo]:
        rows = helper.get_records(COLUMNS_QUERY, parameters=[table.quoted])
        return [
            ColumnInfo(
                name=row[0],
                is_identity=bool(row[1]),
                is_computed=bool(row[2]),
                system_type=(row[3] or '').lower(),
                default_value=row[4],
                max_length=row[5] or 0,
                precision=row[6] or 0,
                scale=row[7] or 0,
            )
            for row in rows
        ]

    def plan_columns(self, table: TableIdentity, options: BulkCopyOptions) -> List[ColumnInfo]:
        """
        Pick the destination columns to fill, in destination column order.

        Columns are matched to the source by name (case-insensitive, as with
        the default SQL Server collation). Computed and rowversion columns are
        skipped, and so is the identity column unless keep_identity is set.
        """
        source_names = {c.name.lower() for c in self._get_columns(self.source, table)}
        destination_columns = self._get_columns(self.destination, table)

        planned = []
        for column in destination_columns:
            if column.is_computed or column.system_type in _UNWRITABLE_TYPES:
                continue
            if column.is_identity and not options.keep_identity:
                continue
            if column.name.lower() not in source_names:
                logger.debug(f"{table}: destination column {column.name} not in source, skipping")
                continue
            planned.append(column)

        return planned

    def build_statements(
        self,
        table: TableIdentity,
        columns: List[ColumnInfo],
        options: BulkCopyOptions,
    ) -> Tuple[str, str]:
        """Build the source SELECT and destination INSERT for the planned columns."""
        quoted_columns = ', '.join(quote_identifier(c.name) for c in columns)
        select_sql = f"SELECT {quoted_columns} FROM {table.quoted}"

        placeholders = []
        for column in columns:
            if not options.keep_nulls and column.default_value:
                # Parameter typed as the column, not as the default literal
                placeholders.append(
                    f"COALESCE(CAST(? AS {column.declared_type}), {column.default_value})"
                )
            else:
                placeholders.append("?")

        hint = " WITH (TABLOCK)" if options.table_lock else ""
        insert_sql = (
            f"INSERT INTO {table.quoted}{hint} ({quoted_columns}) "
            f"VALUES ({', '.join(placeholders)})"
        )
        return select_sql, insert_sql

    def _read_batches(self, cursor, options: BulkCopyOptions) -> Iterator[List[Tuple]]:
        if options.enable_streaming:
            while True:
                rows = cursor.fetchmany(options.batch_size)
                if not rows:
                    break
                yield rows
        else:
            rows = cursor.fetchall()
            for start in range(0, len(rows), options.batch_size):
                yield rows[start:start + options.batch_size]

    def load(
        self,
        table: TableRef,
        options: Optional[BulkCopyOptions] = None,
        on_rows_copied: Optional[RowsCopiedCallback] = None,
    ) -> int:
        """
        Copy every row of a table from source to destination.

        Args:
            table: Table to copy (same name on both sides)
            options: Copy-mode flags (defaults to BulkCopyOptions())
            on_rows_copied: Called with the cumulative row count every
                options.notify_after rows

        Returns:
            Number of rows copied

        Raises:
            TransferError: If reading or writing fails, or either database
                cannot be opened; carries the number of rows already committed
        """
        identity = to_table_identity(table)
        options = options or BulkCopyOptions()
        start_time = time.time()
        rows_copied = 0
        source_conn = None
        destination_conn = None

        try:
            columns = self.plan_columns(identity, options)
            if not columns:
                raise TransferError(
                    f"No columns of {identity} can be copied to the destination",
                    table=identity.key,
                )

            select_sql, insert_sql = self.build_statements(identity, columns, options)
            identity_insert = options.keep_identity and any(c.is_identity for c in columns)
            logger.info(f"Loading {identity}: {len(columns)} columns")

            source_conn = self.source.get_conn()
            destination_conn = self.destination.get_conn()

            write_cursor = destination_conn.cursor()
            write_cursor.fast_executemany = True
            if identity_insert:
                write_cursor.execute(f"SET IDENTITY_INSERT {identity.quoted} ON")

            read_cursor = source_conn.cursor()
            read_cursor.execute(select_sql)

            for batch in self._read_batches(read_cursor, options):
                for rows in notify_slices(batch, rows_copied, options.notify_after):
                    write_cursor.executemany(insert_sql, [tuple(r) for r in rows])
                    destination_conn.commit()
                    rows_copied += len(rows)

                    if (
                        on_rows_copied is not None
                        and options.notify_after > 0
                        and rows_copied % options.notify_after == 0
                    ):
                        on_rows_copied(rows_copied)

            if identity_insert:
                write_cursor.execute(f"SET IDENTITY_INSERT {identity.quoted} OFF")
                destination_conn.commit()

        except (pyodbc.Error, DatabaseConnectionError) as e:
            logger.error(f"Load of {identity} failed after {rows_copied:,} rows: {e}")
            raise TransferError(
                f"Bulk load of {identity} failed after {rows_copied:,} rows: {e}",
                table=identity.key,
                rows_copied=rows_copied,
            ) from e
        finally:
            self.source.release_conn(source_conn)
            self.destination.release_conn(destination_conn)

        elapsed = time.time() - start_time
        rows_per_second = rows_copied / elapsed if elapsed > 0 else 0
        logger.info(
            f"Loaded {rows_copied:,} rows into {identity} in {elapsed:.1f}s "
            f"({rows_per_second:,.0f} rows/sec)"
        )
        return rows_copied
