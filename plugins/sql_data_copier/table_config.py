"""
Table Configuration Utility Module

This module defines how tables are identified throughout a copy job and
handles parsing of the table lists passed in by the host (DAG params), in
'schema.table' format.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, List, Tuple, Union
import logging

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = 'dbo'


def quote_identifier(name: str) -> str:
    """
    Bracket-quote a SQL Server identifier.

    Closing brackets inside the name are doubled, so any stored name is safe:
        quote_identifier("Order Lines") -> "[Order Lines]"
        quote_identifier("odd]name") -> "[odd]]name]"
    """
    return '[' + name.replace(']', ']]') + ']'


@dataclass(frozen=True)
class TableIdentity:
    """
    A table as (schema, table), with names as stored by the engine.

    Equality and hashing are case-sensitive; use matches() for the
    case-insensitive comparison used when excluding tables.
    """

    schema_name: str
    table_name: str

    @property
    def key(self) -> str:
        """Canonical 'schema.table' form shown to users."""
        return f"{self.schema_name}.{self.table_name}"

    @property
    def quoted(self) -> str:
        """'[schema].[table]' form for SQL text and OBJECT_ID()."""
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(self.table_name)}"

    def matches(self, other: "TableIdentity") -> bool:
        return (
            self.schema_name.lower() == other.schema_name.lower()
            and self.table_name.lower() == other.table_name.lower()
        )

    def __str__(self) -> str:
        return self.key


TableRef = Union[str, TableIdentity]


def parse_schema_table(entry: str) -> Tuple[str, str]:
    """
    Parse single 'schema.table' entry.

    Handles:
    - Simple format: "dbo.Users" -> ("dbo", "Users")
    - Bracketed format: "[dbo].[My Table]" -> ("dbo", "My Table")
    - Bare table name: "Users" -> ("dbo", "Users")

    Args:
        entry: Table reference in one of the formats above

    Returns:
        Tuple of (schema, table)

    Raises:
        ValueError: If the entry is empty or has an empty part
    """
    entry = entry.strip()

    bracketed_pattern = r'^\[((?:[^\]]|\]\])+)\]\.\[((?:[^\]]|\]\])+)\]$'
    match = re.match(bracketed_pattern, entry)
    if match:
        return (match.group(1).replace(']]', ']'), match.group(2).replace(']]', ']'))

    if not entry:
        raise ValueError("Invalid table format '': table name cannot be empty")

    if '.' not in entry:
        return (DEFAULT_SCHEMA, entry.strip('[]'))

    parts = entry.split('.', 1)
    schema, table = parts[0].strip().strip('[]'), parts[1].strip().strip('[]')
    if not schema or not table:
        raise ValueError(
            f"Invalid table format '{entry}': must be 'schema.table' or '[schema].[table]'"
        )

    return (schema, table)


def to_table_identity(table: TableRef) -> TableIdentity:
    """Convert a 'schema.table' string (or an existing identity) to a TableIdentity."""
    if isinstance(table, TableIdentity):
        return table
    schema, name = parse_schema_table(table)
    return TableIdentity(schema, name)


def expand_tables_param(tables_raw: Any) -> List[str]:
    """
    Expand and normalize a table list parameter from various input formats.

    Handles:
    - None or empty values: []
    - List of strings: ["dbo.Users", "dbo.Posts"]
    - JSON string: '["dbo.Users", "dbo.Posts"]'
    - Comma-separated string: "dbo.Users,dbo.Posts"
    - List with comma-separated items: ["dbo.Users,dbo.Posts"]

    Args:
        tables_raw: Raw parameter value from DAG params

    Returns:
        Normalized list of table strings, in the order given
    """
    if tables_raw is None:
        return []

    if isinstance(tables_raw, str):
        tables_raw = tables_raw.strip()
        if not tables_raw:
            return []

        try:
            parsed = json.loads(tables_raw)
            if isinstance(parsed, list):
                tables_raw = parsed
            else:
                tables_raw = [str(parsed)]
        except json.JSONDecodeError:
            tables_raw = [t.strip() for t in tables_raw.split(',') if t.strip()]

    if isinstance(tables_raw, (list, tuple)):
        expanded = []
        for item in tables_raw:
            if isinstance(item, str):
                if ',' in item:
                    expanded.extend([t.strip() for t in item.split(',') if t.strip()])
                elif item.strip():
                    expanded.append(item.strip())
        return expanded

    logger.warning(
        "expand_tables_param received unsupported type %s; returning empty list.",
        type(tables_raw).__name__,
    )
    return []
