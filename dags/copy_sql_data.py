"""
SQL Server Data Copy DAG

This DAG copies table data from a source SQL Server database to a
destination database that already has a matching schema:
1. Resolve the tables to copy (explicit list, or every table present in both
   databases in foreign-key dependency order), minus excluded tables
2. Copy the tables one at a time, logging overall and per-table progress
3. Log a summary

The destination schema must already exist. Rows already in destination
tables are left alone, so copy into empty tables.
"""

from airflow.decorators import dag, task
from airflow.models.param import Param
from pendulum import datetime
from typing import Any, Dict, List
import logging

from sql_data_copier.bulk_loader import BulkCopyOptions
from sql_data_copier.data_transfer import TransferCoordinator
from sql_data_copier.dependency_resolver import resolve_transfer_order
from sql_data_copier.odbc_helper import OdbcConnectionHelper
from sql_data_copier.progress import LoggingProgressSink
from sql_data_copier.table_config import expand_tables_param
from sql_data_copier.table_selection import build_table_set

logger = logging.getLogger(__name__)


@dag(
    dag_id="copy_sql_data",
    start_date=datetime(2025, 1, 1),
    schedule=None,
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 0,
    },
    params={
        "source_conn_id": Param(
            default="mssql_source",
            type="string",
            description="Source SQL Server connection ID"
        ),
        "destination_conn_id": Param(
            default="mssql_destination",
            type="string",
            description="Destination SQL Server connection ID"
        ),
        "tables": Param(
            default=[],
            type=["array", "string", "null"],
            description="Tables to copy in 'schema.table' format, copied in the given order. "
                        "Leave empty to copy every table present in both databases in dependency order."
        ),
        "excluded_tables": Param(
            default=[],
            type=["array", "string", "null"],
            description="Tables to leave out (case-insensitive)"
        ),
        "keep_identity": Param(
            default=True,
            type="boolean",
            description="Copy identity values instead of letting the destination generate them"
        ),
        "keep_nulls": Param(
            default=True,
            type="boolean",
            description="Copy NULLs as NULL instead of applying destination column defaults"
        ),
        "table_lock": Param(
            default=False,
            type="boolean",
            description="Take a table lock on each destination table while loading"
        ),
    },
    tags=["copy", "mssql", "data"],
)
def copy_sql_data():
    """Copy DAG: resolve table order, copy tables with progress, summarize."""

    @task
    def resolve_tables(**context) -> List[str]:
        """Build the ordered table list from params, resolving dependencies if needed."""
        params = context["params"]

        source = OdbcConnectionHelper.from_conn_id(params["source_conn_id"], name="source")
        destination = OdbcConnectionHelper.from_conn_id(params["destination_conn_id"], name="destination")

        # Fail before any table starts if either side is unreachable
        source.check_connection()
        destination.check_connection()

        tables = build_table_set(
            expand_tables_param(params.get("tables")),
            expand_tables_param(params.get("excluded_tables")),
            lambda: resolve_transfer_order(source, destination),
        )

        logger.info(f"Copy order ({len(tables)} tables):")
        for index, table in enumerate(tables, start=1):
            logger.info(f"  {index}. {table}")

        # [schema].[table] parses back exactly, even with dots in either name
        return [table.quoted for table in tables]

    @task
    def copy_tables(tables: List[str], **context) -> Dict[str, Any]:
        """Copy the resolved tables in order."""
        params = context["params"]

        source = OdbcConnectionHelper.from_conn_id(params["source_conn_id"], name="source")
        destination = OdbcConnectionHelper.from_conn_id(params["destination_conn_id"], name="destination")

        options = BulkCopyOptions(
            keep_identity=params.get("keep_identity", True),
            keep_nulls=params.get("keep_nulls", True),
            table_lock=params.get("table_lock", False),
        )

        coordinator = TransferCoordinator(
            source,
            destination,
            options=options,
            progress_sink=LoggingProgressSink(logger),
        )
        summary = coordinator.run(tables)

        return {
            "tables": summary.tables,
            "rows_copied": summary.rows_copied,
            "source_row_counts": summary.source_row_counts,
            "elapsed_seconds": summary.elapsed_seconds,
        }

    @task
    def log_copy_summary(summary: Dict[str, Any]) -> str:
        """Log rows copied per table against the source counts."""
        total = sum(summary["rows_copied"].values())
        message = (
            f"Copy complete: {len(summary['tables'])} tables, {total:,} rows "
            f"in {summary['elapsed_seconds']:.1f}s"
        )
        logger.info(message)

        for table in summary["tables"]:
            copied = summary["rows_copied"].get(table, 0)
            expected = summary["source_row_counts"].get(table, 0)
            logger.info(f"  {table}: {copied:,} rows (source statistics: {expected:,})")

        return message

    # Task flow
    tables = resolve_tables()
    summary = copy_tables(tables)
    log_copy_summary(summary)


# Instantiate
copy_sql_data()
