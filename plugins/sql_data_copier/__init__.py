"""
SQL Server Data Copy Utilities

This package copies the row data of a SQL Server database into another
database that already has the same (or a superset) schema, table by table in
foreign-key dependency order, with progress reporting.

Modules:
- table_config: Table identities and parsing of 'schema.table' parameters
- odbc_helper: pyodbc query helper and Airflow connection lookup
- dependency_resolver: Order tables by foreign-key dependency
- table_selection: Merge include/exclude lists into the final table list
- row_counter: Row counts from partition statistics
- bulk_loader: Stream one table from source to destination
- progress: Progress records and the logging progress sink
- data_transfer: Run a copy job and report progress

Performance Options:
- BULK_COPY_BATCH_SIZE=N: Rows fetched from the source per round trip
"""

__version__ = "1.0.0"

from sql_data_copier import table_config
from sql_data_copier import odbc_helper
from sql_data_copier import dependency_resolver
from sql_data_copier import table_selection
from sql_data_copier import row_counter
from sql_data_copier import bulk_loader
from sql_data_copier import progress
from sql_data_copier import data_transfer

__all__ = [
    "table_config",
    "odbc_helper",
    "dependency_resolver",
    "table_selection",
    "row_counter",
    "bulk_loader",
    "progress",
    "data_transfer",
]
