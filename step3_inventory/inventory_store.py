#!/usr/bin/env python3
"""
Inventory stores - persistence for category-group levels, movements and alerts

Every store implements the same contract:
    get_category_group, get_inventory_level, update_inventory,
    get_movements, get_active_alerts, create_alert, resolve_alert

update_inventory performs the read-change-write of one group and writes the
movement row atomically, so concurrent batches never lose an update.
"""

import logging
import sqlite3
import threading
import uuid
from contextlib import closing, contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from step1_extract.errors import InventoryStoreError
from step1_extract.models import CategoryGroup, InventoryAlert, InventoryMovement

logger = logging.getLogger(__name__)

MOVEMENT_COLUMNS = (
    'id', 'category_group_id', 'movement_type', 'quantity', 'unit',
    'previous_inventory', 'new_inventory', 'transaction_reference',
    'order_reference', 'product_sku', 'platform', 'reason', 'notes',
    'adjusted_by', 'created_at',
)

ALERT_COLUMNS = (
    'id', 'category_group_id', 'alert_type', 'current_level', 'threshold_level',
    'unit', 'severity', 'is_active', 'created_at', 'resolved_at', 'acknowledged_by',
)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS category_groups (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        current_inventory DOUBLE PRECISION NOT NULL DEFAULT 0,
        inventory_unit TEXT NOT NULL DEFAULT 'pcs',
        inventory_type TEXT NOT NULL DEFAULT 'qty',
        minimum_threshold DOUBLE PRECISION NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inventory_movements (
        id TEXT PRIMARY KEY,
        category_group_id TEXT NOT NULL,
        movement_type TEXT NOT NULL,
        quantity DOUBLE PRECISION NOT NULL,
        unit TEXT NOT NULL,
        previous_inventory DOUBLE PRECISION NOT NULL,
        new_inventory DOUBLE PRECISION NOT NULL,
        transaction_reference TEXT,
        order_reference TEXT,
        product_sku TEXT,
        platform TEXT,
        reason TEXT,
        notes TEXT,
        adjusted_by TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS inventory_alerts (
        id TEXT PRIMARY KEY,
        category_group_id TEXT NOT NULL,
        alert_type TEXT NOT NULL,
        current_level DOUBLE PRECISION NOT NULL,
        threshold_level DOUBLE PRECISION NOT NULL,
        unit TEXT NOT NULL,
        severity TEXT NOT NULL,
        is_active BOOLEAN NOT NULL,
        created_at TEXT,
        resolved_at TEXT,
        acknowledged_by TEXT
    )
    """,
)


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now().isoformat()


class InventoryStore:
    """Base class documenting the persistence contract used by InventoryService"""

    def get_category_group(self, category_group_id: str) -> Optional[CategoryGroup]:
        raise NotImplementedError

    def get_inventory_level(self, category_group_id: str) -> Optional[float]:
        group = self.get_category_group(category_group_id)
        return group.current_inventory if group else None

    def update_inventory(self, category_group_id: str, quantity_change: float, movement_type: str,
                         unit: str, set_level: Optional[float] = None, **references) -> InventoryMovement:
        """
        Atomically change a group's level and record the movement

        Args:
            category_group_id: Group to change
            quantity_change: Signed change (negative for deductions)
            movement_type: deduction, addition, adjustment or initial
            unit: Unit of the movement quantity
            set_level: Absolute new level; overrides quantity_change
            **references: transaction_reference, order_reference, product_sku,
                          platform, reason, notes, adjusted_by

        Returns:
            The movement written, with previous and new levels

        Raises:
            InventoryStoreError: when the group does not exist or the write fails
        """
        raise NotImplementedError

    def get_movements(self, category_group_id: Optional[str] = None, movement_type: Optional[str] = None,
                      order_reference: Optional[str] = None, platform: Optional[str] = None) -> List[InventoryMovement]:
        raise NotImplementedError

    def get_active_alerts(self, category_group_id: Optional[str] = None) -> List[InventoryAlert]:
        raise NotImplementedError

    def create_alert(self, alert: InventoryAlert) -> InventoryAlert:
        raise NotImplementedError

    def resolve_alert(self, alert_id: str, acknowledged_by: Optional[str] = None) -> None:
        raise NotImplementedError

    @staticmethod
    def _build_movement(category_group_id: str, movement_type: str, unit: str, previous: float,
                        new_level: float, references: Dict[str, Any]) -> InventoryMovement:
        unknown = set(references) - set(MOVEMENT_COLUMNS)
        if unknown:
            raise InventoryStoreError(f"Unknown movement fields: {sorted(unknown)}")
        return InventoryMovement(
            id=_new_id(),
            category_group_id=category_group_id,
            movement_type=movement_type,
            quantity=abs(new_level - previous),
            unit=unit,
            previous_inventory=previous,
            new_inventory=new_level,
            created_at=_now(),
            **references,
        )


class InMemoryInventoryStore(InventoryStore):
    """Lock-guarded in-process store for tests and dry runs"""

    def __init__(self, category_groups: Optional[Iterable[CategoryGroup]] = None):
        self._groups: Dict[str, CategoryGroup] = {}
        self._movements: List[InventoryMovement] = []
        self._alerts: List[InventoryAlert] = []
        self._lock = threading.RLock()
        for group in category_groups or []:
            self.add_category_group(group)

    def add_category_group(self, group: CategoryGroup) -> None:
        with self._lock:
            self._groups[group.id] = replace(group)

    def get_category_group(self, category_group_id: str) -> Optional[CategoryGroup]:
        with self._lock:
            group = self._groups.get(category_group_id)
            return replace(group) if group else None

    def update_inventory(self, category_group_id: str, quantity_change: float, movement_type: str,
                         unit: str, set_level: Optional[float] = None, **references) -> InventoryMovement:
        with self._lock:
            group = self._groups.get(category_group_id)
            if group is None:
                raise InventoryStoreError(f"Category group not found: {category_group_id}")
            previous = group.current_inventory
            new_level = float(set_level) if set_level is not None else previous + quantity_change
            movement = self._build_movement(category_group_id, movement_type, unit, previous, new_level, references)
            group.current_inventory = new_level
            self._movements.append(movement)
            return replace(movement)

    def get_movements(self, category_group_id: Optional[str] = None, movement_type: Optional[str] = None,
                      order_reference: Optional[str] = None, platform: Optional[str] = None) -> List[InventoryMovement]:
        with self._lock:
            return [
                replace(m) for m in self._movements
                if (category_group_id is None or m.category_group_id == category_group_id)
                and (movement_type is None or m.movement_type == movement_type)
                and (order_reference is None or m.order_reference == order_reference)
                and (platform is None or m.platform == platform)
            ]

    def get_active_alerts(self, category_group_id: Optional[str] = None) -> List[InventoryAlert]:
        with self._lock:
            return [
                replace(a) for a in self._alerts
                if a.is_active and (category_group_id is None or a.category_group_id == category_group_id)
            ]

    def create_alert(self, alert: InventoryAlert) -> InventoryAlert:
        with self._lock:
            stored = replace(alert, id=alert.id or _new_id(), created_at=alert.created_at or _now())
            self._alerts.append(stored)
            return replace(stored)

    def resolve_alert(self, alert_id: str, acknowledged_by: Optional[str] = None) -> None:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id and alert.is_active:
                    alert.is_active = False
                    alert.resolved_at = _now()
                    alert.acknowledged_by = acknowledged_by


class SQLInventoryStore(InventoryStore):
    """
    Shared SQL for relational stores

    Queries are written with '?' placeholders; subclasses set PLACEHOLDER
    and LOCK_CLAUSE and provide _cursor() and _transaction().
    """

    PLACEHOLDER = '?'
    LOCK_CLAUSE = ''
    DB_ERRORS: Tuple[type, ...] = ()

    def _sql(self, sql: str) -> str:
        return sql if self.PLACEHOLDER == '?' else sql.replace('?', self.PLACEHOLDER)

    def _cursor(self):
        raise NotImplementedError

    def _transaction(self):
        """Context manager yielding a cursor inside one committed transaction"""
        raise NotImplementedError

    def _query(self, sql: str, params: Iterable[Any] = ()) -> List[Any]:
        try:
            with self._transaction() as cur:
                cur.execute(self._sql(sql), tuple(params))
                return cur.fetchall()
        except self.DB_ERRORS as e:
            raise InventoryStoreError(f"Inventory query failed: {e}") from e

    def _write(self, sql: str, params: Iterable[Any] = ()) -> None:
        try:
            with self._transaction() as cur:
                cur.execute(self._sql(sql), tuple(params))
        except self.DB_ERRORS as e:
            raise InventoryStoreError(f"Inventory write failed: {e}") from e

    def ensure_schema(self) -> None:
        for statement in SCHEMA_STATEMENTS:
            self._write(statement)

    def add_category_group(self, group: CategoryGroup) -> None:
        self._write(
            "INSERT INTO category_groups (id, name, current_inventory, inventory_unit, inventory_type, minimum_threshold) "
            "VALUES (?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (id) DO UPDATE SET name = excluded.name, current_inventory = excluded.current_inventory, "
            "inventory_unit = excluded.inventory_unit, inventory_type = excluded.inventory_type, "
            "minimum_threshold = excluded.minimum_threshold",
            (group.id, group.name, group.current_inventory, group.inventory_unit,
             group.inventory_type, group.minimum_threshold),
        )

    @staticmethod
    def _group_from_row(row) -> CategoryGroup:
        return CategoryGroup(
            id=row['id'],
            name=row['name'],
            current_inventory=float(row['current_inventory']),
            inventory_unit=row['inventory_unit'],
            inventory_type=row['inventory_type'],
            minimum_threshold=float(row['minimum_threshold']),
        )

    def get_category_group(self, category_group_id: str) -> Optional[CategoryGroup]:
        rows = self._query("SELECT * FROM category_groups WHERE id = ?", (category_group_id,))
        return self._group_from_row(rows[0]) if rows else None

    def update_inventory(self, category_group_id: str, quantity_change: float, movement_type: str,
                         unit: str, set_level: Optional[float] = None, **references) -> InventoryMovement:
        try:
            with self._transaction() as cur:
                cur.execute(self._sql("SELECT current_inventory FROM category_groups WHERE id = ?" + self.LOCK_CLAUSE),
                            (category_group_id,))
                row = cur.fetchone()
                if row is None:
                    raise InventoryStoreError(f"Category group not found: {category_group_id}")
                previous = float(row['current_inventory'])
                new_level = float(set_level) if set_level is not None else previous + quantity_change
                movement = self._build_movement(category_group_id, movement_type, unit, previous, new_level, references)

                cur.execute(self._sql("UPDATE category_groups SET current_inventory = ? WHERE id = ?"),
                            (new_level, category_group_id))
                cur.execute(
                    self._sql(f"INSERT INTO inventory_movements ({', '.join(MOVEMENT_COLUMNS)}) "
                              f"VALUES ({', '.join('?' for _ in MOVEMENT_COLUMNS)})"),
                    tuple(getattr(movement, column) for column in MOVEMENT_COLUMNS),
                )
                logger.debug(f"Movement {movement.id}:{category_group_id} {previous} -> {new_level}")
                return movement
        except self.DB_ERRORS as e:
            raise InventoryStoreError(f"Inventory update failed for {category_group_id}: {e}") from e

    def get_movements(self, category_group_id: Optional[str] = None, movement_type: Optional[str] = None,
                      order_reference: Optional[str] = None, platform: Optional[str] = None) -> List[InventoryMovement]:
        filters = {
            'category_group_id': category_group_id,
            'movement_type': movement_type,
            'order_reference': order_reference,
            'platform': platform,
        }
        clauses = [f"{column} = ?" for column, value in filters.items() if value is not None]
        params = [value for value in filters.values() if value is not None]
        sql = "SELECT * FROM inventory_movements"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at"
        return [
            InventoryMovement(**{column: row[column] for column in MOVEMENT_COLUMNS})
            for row in self._query(sql, params)
        ]

    def get_active_alerts(self, category_group_id: Optional[str] = None) -> List[InventoryAlert]:
        sql = "SELECT * FROM inventory_alerts WHERE is_active = ?"
        params: List[Any] = [True]
        if category_group_id is not None:
            sql += " AND category_group_id = ?"
            params.append(category_group_id)
        alerts = []
        for row in self._query(sql + " ORDER BY created_at", params):
            values = {column: row[column] for column in ALERT_COLUMNS}
            values['is_active'] = bool(values['is_active'])
            alerts.append(InventoryAlert(**values))
        return alerts

    def create_alert(self, alert: InventoryAlert) -> InventoryAlert:
        stored = replace(alert, id=alert.id or _new_id(), created_at=alert.created_at or _now())
        self._write(
            f"INSERT INTO inventory_alerts ({', '.join(ALERT_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in ALERT_COLUMNS)})",
            tuple(getattr(stored, column) for column in ALERT_COLUMNS),
        )
        return stored

    def resolve_alert(self, alert_id: str, acknowledged_by: Optional[str] = None) -> None:
        self._write(
            "UPDATE inventory_alerts SET is_active = ?, resolved_at = ?, acknowledged_by = ? "
            "WHERE id = ? AND is_active = ?",
            (False, _now(), acknowledged_by, alert_id, True),
        )


class SQLiteInventoryStore(SQLInventoryStore):
    """
    SQLite-backed store

    Each read-change-write runs inside BEGIN IMMEDIATE, which takes the
    database write lock up front so two processes deducting from the same
    group serialise instead of overwriting each other.
    """

    DB_ERRORS = (sqlite3.Error,)

    def __init__(self, db_path, timeout: float = 30.0):
        self.db_path = str(db_path)
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, timeout=timeout, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self.ensure_schema()

    def _cursor(self):
        return closing(self.conn.cursor())

    @contextmanager
    def _transaction(self):
        with self._lock, self._cursor() as cur:
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            cur.execute("COMMIT")

    def close(self) -> None:
        self.conn.close()
