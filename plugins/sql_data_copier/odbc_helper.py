"""
ODBC Connection Helper

This module provides the query facility the copier uses against both the
source and the destination SQL Server databases. Connections are opened
right before a statement runs and closed right after it, so no connection is
held across a whole copy job.

Connection strings come either straight from the caller or from an Airflow
connection, built with the same keys the Airflow MSSQL provider would use.
"""

from typing import Any, Dict, List, Optional, Tuple
from airflow.hooks.base import BaseHook
import contextlib
import logging
import os
import pyodbc

from sql_data_copier.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = '{ODBC Driver 18 for SQL Server}'


def _get_connect_timeout() -> int:
    """Login timeout in seconds for new connections (ODBC_CONNECT_TIMEOUT)."""
    return int(os.environ.get('ODBC_CONNECT_TIMEOUT', '30'))


def build_connection_config(conn) -> Dict[str, str]:
    """
    Build ODBC connection parameters from an Airflow connection.

    Args:
        conn: Airflow Connection object (host, port, schema, login, password)

    Returns:
        Dictionary of ODBC connection string keys
    """
    port = conn.port or 1433
    server = f"{conn.host},{port}" if port != 1433 else conn.host

    config = {
        'DRIVER': os.environ.get('ODBC_DRIVER', DEFAULT_ODBC_DRIVER),
        'SERVER': server,
        'DATABASE': conn.schema,
        'TrustServerCertificate': 'yes',
    }

    # Add authentication - support both SQL Auth and Windows Auth
    if conn.login:
        config['UID'] = conn.login
        config['PWD'] = conn.password or ''
        config['Trusted_Connection'] = 'no'
    else:
        config['Trusted_Connection'] = 'yes'

    return config


def build_connection_string(config: Dict[str, str]) -> str:
    """Join ODBC parameters into a connection string, skipping empty values."""
    return ';'.join([f"{k}={v}" for k, v in config.items() if v])


def connection_string_for(conn_id: str) -> str:
    """
    Resolve an Airflow connection ID to an ODBC connection string.

    Args:
        conn_id: Airflow connection ID for a SQL Server database

    Returns:
        ODBC connection string
    """
    conn = BaseHook.get_connection(conn_id)
    return build_connection_string(build_connection_config(conn))


class OdbcConnectionHelper:
    """
    Run queries against one SQL Server database through pyodbc.

    Mirrors the query methods of MsSqlHook (get_records, get_first) and adds
    get_scalar for single-value aggregates and check_connection for failing
    fast before a job starts.
    """

    def __init__(self, connection_string: str, name: str = "database"):
        """
        Initialize the ODBC connection helper.

        Args:
            connection_string: ODBC connection string for the database
            name: Label used in log and error messages ("source", "destination")
        """
        self.connection_string = connection_string
        self.name = name

    @classmethod
    def from_conn_id(cls, conn_id: str, name: Optional[str] = None) -> "OdbcConnectionHelper":
        """Create a helper for an Airflow connection ID."""
        return cls(connection_string_for(conn_id), name=name or conn_id)

    def get_conn(self) -> pyodbc.Connection:
        """
        Open a new pyodbc connection.

        Raises:
            DatabaseConnectionError: If the database cannot be reached
        """
        try:
            return pyodbc.connect(self.connection_string, timeout=_get_connect_timeout())
        except pyodbc.Error as e:
            logger.error(f"Could not connect to {self.name} database: {e}")
            raise DatabaseConnectionError(f"Cannot open {self.name} database: {e}") from e

    def release_conn(self, conn: Optional[pyodbc.Connection]) -> None:
        """Close a connection returned by get_conn."""
        if conn is None:
            return
        conn.close()

    @contextlib.contextmanager
    def connection(self):
        """Context manager yielding an open connection that is closed on exit."""
        conn = self.get_conn()
        try:
            yield conn
        finally:
            self.release_conn(conn)

    def check_connection(self) -> None:
        """
        Open and close one connection to fail fast on bad credentials or hosts.

        Raises:
            DatabaseConnectionError: If the database cannot be reached
        """
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
        logger.info(f"Connected to {self.name} database")

    def get_records(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> List[Tuple[Any, ...]]:
        """
        Execute a query and return all rows.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query

        Returns:
            List of rows
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()

            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)

            return cursor.fetchall()
        except pyodbc.Error as e:
            logger.error(f"Error executing query on {self.name}: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            self.release_conn(conn)

    def get_first(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> Optional[Tuple[Any, ...]]:
        """
        Execute a query and return the first row, or None if there are no rows.

        Args:
            sql: SQL query to execute
            parameters: Optional list of parameters for the query
        """
        conn = None
        try:
            conn = self.get_conn()
            cursor = conn.cursor()

            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)

            return cursor.fetchone()
        except pyodbc.Error as e:
            logger.error(f"Error executing query on {self.name}: {e}")
            logger.error(f"Query: {sql}")
            if parameters:
                logger.error(f"Parameters: {parameters}")
            raise
        finally:
            self.release_conn(conn)

    def get_scalar(
        self,
        sql: str,
        parameters: Optional[List[Any]] = None
    ) -> Any:
        """Execute a query and return the first column of the first row (or None)."""
        row = self.get_first(sql, parameters)
        if row is None:
            return None
        return row[0]
