"""
Table Selection Module

Builds the final, ordered list of tables for a copy job from the host's
include and exclude lists, falling back to dependency resolution when no
include list is given.
"""

from typing import Callable, List, Optional, Sequence
import logging

from sql_data_copier.table_config import TableIdentity, TableRef, to_table_identity

logger = logging.getLogger(__name__)


def build_table_set(
    explicit_includes: Optional[Sequence[TableRef]],
    explicit_excludes: Optional[Sequence[TableRef]],
    resolver_fallback: Callable[[], Sequence[TableRef]],
) -> List[TableIdentity]:
    """
    Build the ordered list of tables to copy.

    A non-empty include list is used as given, in the caller's order; the
    caller is then responsible for a dependency-safe order and the resolver
    is never called. Otherwise resolver_fallback() supplies the list.

    Excluded tables are removed using case-insensitive matching; the order
    of the remaining tables is unchanged. Excluding a table that isn't in
    the list does nothing. Repeated tables (compared case-insensitively, like
    excludes) are kept once, at their first position.

    Args:
        explicit_includes: Tables to copy, or None/empty to resolve them
        explicit_excludes: Tables to leave out, or None/empty
        resolver_fallback: Zero-argument callable returning the resolved order

    Returns:
        Ordered list of tables; may be empty
    """
    if explicit_includes:
        tables = [to_table_identity(t) for t in explicit_includes]
        logger.info(f"Using {len(tables)} explicitly listed tables")
    else:
        tables = [to_table_identity(t) for t in resolver_fallback()]
        logger.info(f"Using {len(tables)} tables from dependency resolution")

    unique: List[TableIdentity] = []
    for table in tables:
        if any(table.matches(kept) for kept in unique):
            logger.warning(f"Table {table} listed more than once; copying it once")
            continue
        unique.append(table)
    tables = unique

    if explicit_excludes:
        excluded = [to_table_identity(t) for t in explicit_excludes]
        kept = []
        for table in tables:
            if any(table.matches(ex) for ex in excluded):
                logger.info(f"Excluding table {table}")
                continue
            kept.append(table)
        tables = kept

    if not tables:
        logger.info("No tables selected; nothing to copy")

    return tables
