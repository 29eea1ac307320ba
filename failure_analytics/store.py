"""
Organization-scoped record store.

A thin generic layer over database.py exposing insert / update / delete /
select for each entity table. Every statement is filtered on
organization_id; filters are plain equality/range predicates on the
table's known columns.

Driver failures (unreachable database, missing tables) are raised as
StoreUnavailableError and are never turned into empty results.
"""

import json
import uuid
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .database import get_db_connection, driver_errors, integrity_errors, row_to_dict
from .errors import StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)


class Operator(Enum):
    """Comparison operators for store predicates"""
    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    IS_NULL = "is_null"


_SQL_OPERATORS = {
    Operator.EQUALS: '=',
    Operator.NOT_EQUALS: '<>',
    Operator.GREATER_THAN: '>',
    Operator.GREATER_THAN_OR_EQUAL: '>=',
    Operator.LESS_THAN: '<',
    Operator.LESS_THAN_OR_EQUAL: '<=',
}


@dataclass(frozen=True)
class Predicate:
    """A single filter on one column."""
    field: str
    value: Any = None
    operator: Operator = Operator.EQUALS


@dataclass(frozen=True)
class TableSpec:
    columns: Sequence[str]
    json_columns: Sequence[str] = field(default_factory=tuple)
    bool_columns: Sequence[str] = field(default_factory=tuple)


_COMMON = ('id', 'organization_id', 'created_at', 'updated_at')

TABLES: Dict[str, TableSpec] = {
    'failure_codes': TableSpec(
        columns=_COMMON + (
            'code', 'name', 'description', 'category', 'severity',
            'common_causes', 'suggested_actions', 'mttr_hours', 'is_active',
        ),
        json_columns=('common_causes', 'suggested_actions'),
        bool_columns=('is_active',),
    ),
    'root_causes': TableSpec(
        columns=_COMMON + ('code', 'name', 'description', 'category'),
    ),
    'actions_taken': TableSpec(
        columns=_COMMON + ('code', 'name', 'description', 'category'),
    ),
    'failure_records': TableSpec(
        columns=_COMMON + (
            'work_order_id', 'work_order_number', 'equipment_id', 'equipment_name',
            'failure_code_id', 'failure_code', 'root_cause_id', 'root_cause_code',
            'action_taken_id', 'action_taken_code', 'failure_date', 'reported_by',
            'reported_by_name', 'description', 'downtime_hours', 'repair_hours',
            'parts_cost', 'labor_cost', 'five_whys', 'corrective_actions',
            'preventive_actions', 'is_recurring', 'previous_failure_id',
        ),
        json_columns=('five_whys', 'corrective_actions', 'preventive_actions'),
        bool_columns=('is_recurring',),
    ),
    'root_cause_analyses': TableSpec(
        columns=_COMMON + (
            'failure_record_id', 'equipment_id', 'equipment_name', 'analysis_date',
            'performed_by', 'performed_by_name', 'problem_statement',
            'root_cause_category', 'root_cause_id', 'five_whys', 'contributing_factors',
            'corrective_actions', 'preventive_actions', 'verification_required',
            'verification_date', 'verified_by', 'status', 'attachments', 'notes',
            'supersedes_id',
        ),
        json_columns=(
            'five_whys', 'contributing_factors', 'corrective_actions',
            'preventive_actions', 'attachments',
        ),
        bool_columns=('verification_required',),
    ),
}

# Columns callers may never overwrite through update()
_IMMUTABLE = ('id', 'organization_id', 'created_at')


def generate_uuid() -> str:
    return str(uuid.uuid4())


def _now() -> str:
    return datetime.utcnow().isoformat() + 'Z'


class SqlRecordStore:
    """
    Generic queryable store over the SQLite/PostgreSQL connection layer.

    Each call opens its own connection; nothing is shared between callers.
    Reads without an organization scope return nothing without touching
    the database; writes without one are rejected.
    """

    def __init__(self, database_path: Optional[str] = None):
        self.database_path = database_path

    # -- helpers --

    @staticmethod
    def _spec(table: str) -> TableSpec:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        return TABLES[table]

    @staticmethod
    def _require_scope(organization_id: Optional[str]):
        if not organization_id:
            raise ValidationError("Organization scope is required")

    @contextmanager
    def _connection(self):
        try:
            with get_db_connection(self.database_path) as conn:
                yield conn
        except integrity_errors() as e:
            logger.warning(f"Store rejected write: {e}")
            raise ValidationError(f"Constraint violation: {e}") from e
        except driver_errors() as e:
            logger.error(f"Record store unavailable: {e}")
            raise StoreUnavailableError(f"Record store unavailable: {e}") from e

    def _encode(self, spec: TableSpec, column: str, value: Any) -> Any:
        if isinstance(value, Enum):
            value = value.value
        if column in spec.json_columns and value is not None and not isinstance(value, str):
            return json.dumps(value)
        return value

    def _decode(self, spec: TableSpec, row) -> Dict[str, Any]:
        record = row_to_dict(row)
        for column in spec.json_columns:
            value = record.get(column)
            if isinstance(value, str):
                record[column] = json.loads(value) if value else []
            elif value is None:
                record[column] = []
        for column in spec.bool_columns:
            if record.get(column) is not None:
                record[column] = bool(record[column])
        return record

    def _where(self, spec: TableSpec, organization_id: str,
               predicates: Iterable[Predicate]):
        clauses = ['organization_id = ?']
        params: List[Any] = [organization_id]
        for predicate in predicates:
            if predicate.field not in spec.columns:
                raise ValueError(f"Unknown field: {predicate.field}")
            if predicate.operator is Operator.IN:
                values = list(predicate.value or [])
                if not values:
                    clauses.append('1 = 0')
                    continue
                placeholders = ', '.join('?' for _ in values)
                clauses.append(f"{predicate.field} IN ({placeholders})")
                params.extend(self._encode(spec, predicate.field, v) for v in values)
            elif predicate.operator is Operator.IS_NULL:
                clauses.append(f"{predicate.field} IS NULL")
            else:
                clauses.append(f"{predicate.field} {_SQL_OPERATORS[predicate.operator]} ?")
                params.append(self._encode(spec, predicate.field, predicate.value))
        return ' AND '.join(clauses), params

    def _fetch(self, conn, table: str, spec: TableSpec, organization_id: str,
               record_id: str) -> Optional[Dict[str, Any]]:
        cursor = conn.execute(
            f"SELECT * FROM {table} WHERE id = ? AND organization_id = ?",
            (record_id, organization_id)
        )
        row = cursor.fetchone()
        return self._decode(spec, row) if row else None

    # -- writes --

    def insert(self, table: str, organization_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record and return it as stored."""
        self._require_scope(organization_id)
        spec = self._spec(table)

        timestamp = _now()
        record = {k: v for k, v in values.items() if k in spec.columns}
        record['id'] = record.get('id') or generate_uuid()
        record['organization_id'] = organization_id
        record['created_at'] = timestamp
        record['updated_at'] = timestamp

        columns = list(record.keys())
        placeholders = ', '.join('?' for _ in columns)
        params = tuple(self._encode(spec, c, record[c]) for c in columns)

        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
                params
            )
            stored = self._fetch(conn, table, spec, organization_id, record['id'])

        logger.debug(f"Inserted {table}/{record['id']} for organization {organization_id}")
        return stored

    def update(self, table: str, organization_id: str, record_id: str,
               changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply changes to one record. Returns the updated record or None if absent."""
        self._require_scope(organization_id)
        spec = self._spec(table)

        values = {k: v for k, v in changes.items() if k in spec.columns and k not in _IMMUTABLE}
        values['updated_at'] = _now()
        assignments = ', '.join(f"{c} = ?" for c in values)
        params = [self._encode(spec, c, v) for c, v in values.items()]

        with self._connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ? AND organization_id = ?",
                tuple(params + [record_id, organization_id])
            )
            if cursor.rowcount == 0:
                return None
            return self._fetch(conn, table, spec, organization_id, record_id)

    def update_where(self, table: str, organization_id: str,
                     predicates: Iterable[Predicate], changes: Dict[str, Any]) -> int:
        """Apply the same changes to every matching record. Returns the affected count."""
        self._require_scope(organization_id)
        spec = self._spec(table)

        values = {k: v for k, v in changes.items() if k in spec.columns and k not in _IMMUTABLE}
        values['updated_at'] = _now()
        assignments = ', '.join(f"{c} = ?" for c in values)
        where, where_params = self._where(spec, organization_id, predicates)
        params = [self._encode(spec, c, v) for c, v in values.items()] + where_params

        with self._connection() as conn:
            cursor = conn.execute(f"UPDATE {table} SET {assignments} WHERE {where}", tuple(params))
            return cursor.rowcount

    def delete(self, table: str, organization_id: str, record_id: str) -> bool:
        self._require_scope(organization_id)
        self._spec(table)
        with self._connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE id = ? AND organization_id = ?",
                (record_id, organization_id)
            )
            return cursor.rowcount > 0

    def delete_where(self, table: str, organization_id: str,
                     predicates: Iterable[Predicate]) -> int:
        self._require_scope(organization_id)
        spec = self._spec(table)
        where, params = self._where(spec, organization_id, predicates)
        with self._connection() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE {where}", tuple(params))
            return cursor.rowcount

    # -- reads --

    def select(self, table: str, organization_id: str,
               predicates: Iterable[Predicate] = (),
               order_by: Optional[str] = None,
               descending: bool = False) -> List[Dict[str, Any]]:
        """Select matching records, ordered by order_by then id."""
        spec = self._spec(table)
        if not organization_id:
            return []

        where, params = self._where(spec, organization_id, predicates)
        direction = 'DESC' if descending else 'ASC'
        if order_by is not None and order_by not in spec.columns:
            raise ValueError(f"Unknown order field: {order_by}")
        order = f"{order_by} {direction}, id {direction}" if order_by else f"id {direction}"

        with self._connection() as conn:
            cursor = conn.execute(
                f"SELECT * FROM {table} WHERE {where} ORDER BY {order}",
                tuple(params)
            )
            return [self._decode(spec, row) for row in cursor.fetchall()]

    def select_one(self, table: str, organization_id: str,
                   record_id: str) -> Optional[Dict[str, Any]]:
        spec = self._spec(table)
        if not organization_id or not record_id:
            return None
        with self._connection() as conn:
            return self._fetch(conn, table, spec, organization_id, record_id)

    def count(self, table: str, organization_id: str,
              predicates: Iterable[Predicate] = ()) -> int:
        spec = self._spec(table)
        if not organization_id:
            return 0
        where, params = self._where(spec, organization_id, predicates)
        with self._connection() as conn:
            cursor = conn.execute(f"SELECT COUNT(*) AS total FROM {table} WHERE {where}", tuple(params))
            row = cursor.fetchone()
            return int(row['total']) if row else 0

    def ping(self) -> bool:
        """Verify the store is reachable and the schema is present."""
        with self._connection() as conn:
            conn.execute("SELECT COUNT(*) AS total FROM failure_records WHERE 1 = 0")
        return True
