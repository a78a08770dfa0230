"""
Copier Exceptions

Errors raised while copying table data. Everything except ReportingError
ends the copy job and reaches the caller unchanged; nothing is retried.
"""

from typing import Optional


class CopierError(Exception):
    """Base class for all copy job failures."""


class DatabaseConnectionError(CopierError):
    """The source or destination database could not be opened."""


class DataAccessError(CopierError):
    """
    Metadata lookup for a table failed (dependency listing, object id, row count).

    Attributes:
        table: Table the lookup was for, if any
        phase: Job phase the failure happened in ("resolving" or "counting")
    """

    def __init__(self, message: str, table: Optional[str] = None, phase: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.phase = phase


class TransferError(CopierError):
    """
    The bulk load of a table failed part way through.

    Rows committed before the failure are left in the destination table.

    Attributes:
        table: Table being loaded
        phase: Always "loading"
        rows_copied: Rows committed before the failure
    """

    def __init__(self, message: str, table: str, rows_copied: int = 0):
        super().__init__(message)
        self.table = table
        self.phase = "loading"
        self.rows_copied = rows_copied


class ReportingError(CopierError):
    """The progress sink rejected an update. Never ends the copy job."""
