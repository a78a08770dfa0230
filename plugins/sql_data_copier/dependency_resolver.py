"""
Foreign Key Dependency Resolution Module

This module works out a safe copy order for every user table in a database:
tables nobody references come first, and every table comes after the tables
its foreign keys point to.

Each table gets an ordinal, the length of the longest foreign-key chain
ending at it. The graph is read once from the system catalog (tables and
foreign keys) and the ordinals are computed here by iterative relaxation
over an adjacency map keyed by object id.

Foreign-key cycles (two tables referencing each other, or longer loops) have
no safe order. They are not broken: relaxation stops after as many rounds as
there are tables, a warning names the tables involved, and the ordinals
reached at that point are used as-is.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Set, Tuple
import logging

import pyodbc

from sql_data_copier.exceptions import DataAccessError
from sql_data_copier.odbc_helper import OdbcConnectionHelper
from sql_data_copier.table_config import TableIdentity

logger = logging.getLogger(__name__)

USER_TABLES_QUERY = """
SELECT
    OBJECT_SCHEMA_NAME(so.object_id) AS schema_name,
    OBJECT_NAME(so.object_id) AS table_name,
    so.object_id AS table_id
FROM sys.objects AS so
WHERE so.type = 'U'
  AND so.is_ms_shipped = 0  -- Exclude shipped/system tables
"""

FOREIGN_KEYS_QUERY = """
SELECT DISTINCT
    f.parent_object_id,
    f.referenced_object_id
FROM sys.foreign_keys AS f
WHERE f.parent_object_id != f.referenced_object_id  -- Self references don't affect order
"""


@dataclass(frozen=True)
class DependencyGraphNode:
    """A user table with its object id and computed dependency ordinal."""

    identity: TableIdentity
    table_id: int
    ordinal: int


def compute_ordinals(
    table_ids: Iterable[int],
    foreign_keys: Iterable[Tuple[int, int]],
) -> Tuple[Dict[int, int], Set[int]]:
    """
    Compute the longest-chain ordinal of every table.

    Args:
        table_ids: Object ids of all user tables
        foreign_keys: (referencing_id, referenced_id) pairs; pairs naming
            unknown tables or the same table twice are ignored

    Returns:
        Tuple of (ordinal by table id, ids still changing when relaxation
        stopped). The second set is empty unless the graph has a cycle.
    """
    ordinals: Dict[int, int] = {table_id: 0 for table_id in table_ids}

    dependents: Dict[int, Set[int]] = defaultdict(set)
    for referencing_id, referenced_id in foreign_keys:
        if referencing_id == referenced_id:
            continue
        if referencing_id in ordinals and referenced_id in ordinals:
            dependents[referenced_id].add(referencing_id)

    frontier = set(ordinals)
    rounds = 0
    while frontier:
        # An acyclic chain has fewer edges than there are tables
        if rounds > len(ordinals):
            return ordinals, frontier

        changed: Set[int] = set()
        for referenced_id in sorted(frontier):
            for referencing_id in sorted(dependents.get(referenced_id, ())):
                candidate = ordinals[referenced_id] + 1
                if ordinals[referencing_id] < candidate:
                    ordinals[referencing_id] = candidate
                    changed.add(referencing_id)

        frontier = changed
        rounds += 1

    return ordinals, set()


class DependencyResolver:
    """Order the user tables of one database by foreign-key dependency."""

    def __init__(self, helper: OdbcConnectionHelper):
        """
        Args:
            helper: Query helper for the database to inspect
        """
        self.helper = helper

    def _fetch(self, sql: str) -> List[Tuple]:
        try:
            return self.helper.get_records(sql)
        except pyodbc.Error as e:
            raise DataAccessError(
                f"Could not read table dependencies from {self.helper.name} database: {e}",
                phase="resolving",
            ) from e

    def resolve(self) -> List[DependencyGraphNode]:
        """
        List all user tables, dependencies first.

        Returns:
            Nodes ordered by ordinal, then table name, then schema name
        """
        tables = self._fetch(USER_TABLES_QUERY)
        foreign_keys = self._fetch(FOREIGN_KEYS_QUERY)

        identities: Dict[int, TableIdentity] = {
            row[2]: TableIdentity(row[0], row[1]) for row in tables
        }
        ordinals, unresolved = compute_ordinals(
            identities.keys(),
            ((row[0], row[1]) for row in foreign_keys),
        )

        if unresolved:
            names = sorted(identities[table_id].key for table_id in unresolved)
            logger.warning(
                f"Foreign key cycle detected in {self.helper.name} database; "
                f"copy order is best-effort for: {', '.join(names)}"
            )

        nodes = [
            DependencyGraphNode(identity, table_id, ordinals[table_id])
            for table_id, identity in identities.items()
        ]
        nodes.sort(key=lambda n: (n.ordinal, n.identity.table_name, n.identity.schema_name))

        logger.info(
            f"Resolved {len(nodes)} tables in {self.helper.name} database "
            f"({len(foreign_keys)} foreign key links, max ordinal "
            f"{max((n.ordinal for n in nodes), default=0)})"
        )
        return nodes


def resolve_transfer_order(
    source_helper: OdbcConnectionHelper,
    destination_helper: OdbcConnectionHelper,
) -> List[TableIdentity]:
    """
    Tables present in both databases, in the destination's dependency order.

    Names are matched exactly as stored (case-sensitive). Tables that exist
    on only one side are left out.

    Args:
        source_helper: Query helper for the source database
        destination_helper: Query helper for the destination database

    Returns:
        Ordered list of tables to copy
    """
    source_nodes = DependencyResolver(source_helper).resolve()
    destination_nodes = DependencyResolver(destination_helper).resolve()

    source_tables = {node.identity for node in source_nodes}
    destination_tables = {node.identity for node in destination_nodes}

    ordered = [node.identity for node in destination_nodes if node.identity in source_tables]

    for table in sorted(source_tables - destination_tables, key=str):
        logger.debug(f"Skipping {table}: not present in destination")
    for table in sorted(destination_tables - source_tables, key=str):
        logger.debug(f"Skipping {table}: not present in source")

    logger.info(f"{len(ordered)} tables present in both source and destination")
    return ordered
