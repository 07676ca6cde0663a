"""
store.py - In-Memory Key/Table Store

Reference implementation of the MeterStore protocol. A host ledger normally
provides the store; this one backs the tests and the demo.

Key responsibilities:
    - Scalar keys (exchange rate, exchange pool balance)
    - Keyed tables with an optional version column for optimistic concurrency
    - Batches of writes applied atomically: every write lands or none does
"""

from __future__ import annotations
from typing import Dict, Iterator, Optional, Sequence, Tuple, Any
import logging

from .core import (
    Row, StoreWrite,
    PutState, InsertRow, ReplaceRow, DeleteRow,
    PersistenceError, StaleRecordError,
)

logger = logging.getLogger(__name__)


class InMemoryStore:
    """
    Scalar keys plus keyed tables, held in dictionaries.

    Design Principles:
        - Reads return copies: callers can never mutate stored rows in place.
        - Writes only through commit(): the batch is applied to a staged copy
          of the data and swapped in once every write has succeeded.

    Thread Safety:
        Not thread-safe. The host is expected to serialize invocations.

    Example:
        store = InMemoryStore()
        store.create_table("Meters", key_column="AccountId", version_column="Version")
        store.commit([InsertRow("Meters", {"AccountId": "m1", "Version": 0})])
    """

    def __init__(self, name: str = "store"):
        self.name = name
        self._state: Dict[str, str] = {}
        self._tables: Dict[str, Dict[str, Row]] = {}
        self._schemas: Dict[str, Tuple[str, Optional[str]]] = {}
        self.commit_count: int = 0

    # ========================================================================
    # READS
    # ========================================================================

    def get_state(self, key: str) -> Optional[str]:
        return self._state.get(key)

    def has_table(self, table: str) -> bool:
        return table in self._tables

    def get_row(self, table: str, key: str) -> Optional[Row]:
        rows = self._require_table(self._tables, table)
        row = rows.get(key)
        return dict(row) if row is not None else None

    def rows(self, table: str) -> Iterator[Row]:
        rows = self._require_table(self._tables, table)
        for row in list(rows.values()):
            yield dict(row)

    def snapshot(self) -> Dict[str, Any]:
        """Return a deep copy of everything stored, for comparisons in tests and audits."""
        return {
            "state": dict(self._state),
            "tables": {
                name: {key: dict(row) for key, row in rows.items()}
                for name, rows in self._tables.items()
            },
        }

    # ========================================================================
    # SCHEMA
    # ========================================================================

    def create_table(self, table: str, key_column: str, version_column: Optional[str] = None) -> None:
        """
        Create an empty table.

        Raises:
            PersistenceError: If the table already exists
        """
        if table in self._tables:
            raise PersistenceError(f"Table {table} already exists")
        self._tables[table] = {}
        self._schemas[table] = (key_column, version_column)
        logger.debug("Created table %s keyed on %s", table, key_column)

    # ========================================================================
    # WRITES
    # ========================================================================

    def commit(self, writes: Sequence[StoreWrite]) -> None:
        """
        Apply a batch of writes atomically.

        Every write is applied to a staged copy of the data; the copy replaces
        the live data only after the last write succeeded.

        Raises:
            PersistenceError: If any write is rejected (missing table or row,
                duplicate key, version mismatch). Nothing is applied.
        """
        if not writes:
            return
        staged_state = dict(self._state)
        staged_tables = {name: dict(rows) for name, rows in self._tables.items()}

        for write in writes:
            self._apply(write, staged_state, staged_tables)

        self._state = staged_state
        self._tables = staged_tables
        self.commit_count += 1
        logger.debug("Committed batch of %d writes to %s", len(writes), self.name)

    def _apply(
        self,
        write: StoreWrite,
        state: Dict[str, str],
        tables: Dict[str, Dict[str, Row]],
    ) -> None:
        """Apply one write to the staged data."""
        if isinstance(write, PutState):
            state[write.key] = write.value
            return

        rows = self._require_table(tables, write.table)
        key_column, version_column = self._schemas[write.table]

        if isinstance(write, InsertRow):
            key = self._row_key(write.row, key_column, write.table)
            if key in rows:
                raise PersistenceError(f"Row {key} already exists in {write.table}")
            rows[key] = dict(write.row)
        elif isinstance(write, ReplaceRow):
            key = self._row_key(write.row, key_column, write.table)
            current = rows.get(key)
            if current is None:
                raise PersistenceError(f"Row {key} not found in {write.table}")
            self._check_version(write.table, key, current, version_column, write.expected_version)
            rows[key] = dict(write.row)
        elif isinstance(write, DeleteRow):
            current = rows.get(write.key)
            if current is None:
                raise PersistenceError(f"Row {write.key} not found in {write.table}")
            self._check_version(write.table, write.key, current, version_column, write.expected_version)
            del rows[write.key]
        else:
            raise PersistenceError(f"Unsupported write: {write!r}")

    @staticmethod
    def _require_table(tables: Dict[str, Dict[str, Row]], table: str) -> Dict[str, Row]:
        if table not in tables:
            raise PersistenceError(f"Table {table} not found")
        return tables[table]

    @staticmethod
    def _row_key(row: Row, key_column: str, table: str) -> str:
        key = row.get(key_column)
        if not key:
            raise PersistenceError(f"Row for {table} is missing key column {key_column}")
        return key

    @staticmethod
    def _check_version(
        table: str,
        key: str,
        current: Row,
        version_column: Optional[str],
        expected: Optional[int],
    ) -> None:
        if expected is None or version_column is None:
            return
        found = current.get(version_column)
        if found != expected:
            raise StaleRecordError(
                f"Row {key} in {table} is at version {found}, expected {expected}"
            )
