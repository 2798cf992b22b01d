#!/usr/bin/env python3
"""
PostgreSQL inventory store
Row-level locking (SELECT ... FOR UPDATE) serialises concurrent deductions
against the same category group
"""

import logging
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from .inventory_store import SQLInventoryStore

logger = logging.getLogger(__name__)


class PostgresInventoryStore(SQLInventoryStore):
    """psycopg2-backed store sharing the relational schema of SQLiteInventoryStore"""

    PLACEHOLDER = '%s'
    LOCK_CLAUSE = ' FOR UPDATE'
    DB_ERRORS = (psycopg2.Error,)

    def __init__(self, conn, create_schema: bool = True):
        """
        Args:
            conn: Open psycopg2 connection
            create_schema: Create the inventory tables when missing
        """
        self.conn = conn
        if create_schema:
            self.ensure_schema()

    @classmethod
    def from_dsn(cls, dsn: str, **kwargs) -> 'PostgresInventoryStore':
        logger.info("Connecting to inventory database")
        return cls(psycopg2.connect(dsn), **kwargs)

    def _cursor(self):
        return self.conn.cursor(cursor_factory=RealDictCursor)

    @contextmanager
    def _transaction(self):
        # connection context commits on success and rolls back on error
        with self.conn:
            with self._cursor() as cur:
                yield cur

    def close(self) -> None:
        self.conn.close()
