"""
Row Counter Module

Counts source rows from partition statistics instead of scanning the table.
The count is a snapshot taken before the copy starts and is only used as the
denominator for progress percentages.
"""

import logging

import pyodbc

from sql_data_copier.exceptions import DataAccessError, DatabaseConnectionError
from sql_data_copier.odbc_helper import OdbcConnectionHelper
from sql_data_copier.table_config import TableRef, to_table_identity

logger = logging.getLogger(__name__)

# Heap (index_id 0) or clustered index (index_id 1) holds every row once
ROW_COUNT_QUERY = """
SELECT SUM(ps.row_count)
FROM sys.dm_db_partition_stats AS ps
WHERE ps.object_id = OBJECT_ID(?)
  AND ps.index_id IN (0, 1)
"""

OBJECT_ID_QUERY = "SELECT OBJECT_ID(?)"


class RowCounter:
    """Count rows of tables in one database."""

    def __init__(self, helper: OdbcConnectionHelper):
        self.helper = helper

    def count(self, table: TableRef) -> int:
        """
        Get the row count of a table from sys.dm_db_partition_stats.

        Args:
            table: Table to count

        Returns:
            Row count, 0 for an empty table

        Raises:
            DataAccessError: If the table doesn't exist, the lookup fails, or
                the database can't be opened
        """
        identity = to_table_identity(table)
        name = identity.quoted

        try:
            object_id = self.helper.get_scalar(OBJECT_ID_QUERY, parameters=[name])
            if object_id is None:
                raise DataAccessError(
                    f"Table {identity} not found in {self.helper.name} database",
                    table=identity.key,
                    phase="counting",
                )
            row_count = self.helper.get_scalar(ROW_COUNT_QUERY, parameters=[name])
        except (pyodbc.Error, DatabaseConnectionError) as e:
            raise DataAccessError(
                f"Could not count rows of {identity}: {e}",
                table=identity.key,
                phase="counting",
            ) from e

        count = int(row_count or 0)
        logger.debug(f"{identity}: {count:,} rows")
        return count
