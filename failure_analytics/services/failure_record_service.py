"""
Failure Record Repository

Stores discrete failure events against equipment and the failure taxonomy.
All checks run before anything is written; a rejected create leaves the
store untouched.

Once a root cause analysis references a record, its equipment_id,
failure_date and downtime_hours are locked. Deleting a record that an RCA
or a later recurrence points at requires force=True.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import ReferentialIntegrityError, ValidationError
from ..models import FailureRecord, iso_date
from ..store import Operator, Predicate
from ..validators import (
    next_day,
    parse_date,
    validate_failure_date,
    validate_non_negative,
    validate_organization_id,
    validate_required_fields,
)

logger = logging.getLogger(__name__)

TABLE = 'failure_records'
RCA_TABLE = 'root_cause_analyses'

REQUIRED_FIELDS = ('equipment_id', 'failure_code_id', 'failure_date')
LOCKED_FIELDS = ('equipment_id', 'failure_date', 'downtime_hours')
REFERENCE_FIELDS = ('failure_code_id', 'root_cause_id', 'action_taken_id')
_SYSTEM_FIELDS = {'id', 'created_at', 'updated_at'}


def _check(result):
    is_valid, error = result
    if not is_valid:
        logger.warning(f"Rejected failure record: {error}")
        raise ValidationError(error)


def _require_scope(organization_id: str):
    _check(validate_organization_id(organization_id))


def _to_record(row: Optional[Dict[str, Any]]) -> Optional[FailureRecord]:
    return FailureRecord(**row) if row else None


def _as_dict(data) -> Dict[str, Any]:
    if isinstance(data, FailureRecord):
        return data.model_dump(exclude_unset=True)
    if not isinstance(data, dict):
        raise ValidationError("Failure record data must be an object")
    return dict(data)


def _date_key(value: Any) -> Optional[datetime]:
    parsed = parse_date(value)
    return parsed.replace(tzinfo=None) if parsed else None


def cascade_delete_failure_records(store, organization_id: str, record_ids: Iterable[str]) -> int:
    """
    Remove failure records together with their RCA records.

    Recurrence back-pointers from other records to the removed ones are
    cleared. Returns the number of failure records deleted.
    """
    ids = list(record_ids)
    if not ids:
        return 0
    store.delete_where(RCA_TABLE, organization_id, [Predicate('failure_record_id', ids, Operator.IN)])
    store.update_where(
        TABLE, organization_id,
        [Predicate('previous_failure_id', ids, Operator.IN)],
        {'previous_failure_id': None}
    )
    deleted = store.delete_where(TABLE, organization_id, [Predicate('id', ids, Operator.IN)])
    logger.info(f"Cascade-deleted {deleted} failure record(s) for organization {organization_id}")
    return deleted


class FailureRecordRepository:
    """Organization-scoped access to failure records."""

    def __init__(self, store, taxonomy):
        self.store = store
        self.taxonomy = taxonomy

    # -- validation helpers --

    def _resolve_taxonomy(self, organization_id: str, record: FailureRecord,
                          provided: Dict[str, Any],
                          references: Iterable[str] = REFERENCE_FIELDS) -> Dict[str, Any]:
        """
        Check taxonomy references and fill denormalized snapshots the caller left out.

        Only the id fields named in references are looked up; snapshots of
        the others are left as stored.
        """
        references = set(references)
        snapshots: Dict[str, Any] = {}

        if 'failure_code_id' in references:
            failure_code = self.taxonomy.get_failure_code(organization_id, record.failure_code_id)
            if failure_code is None:
                _check((False, f"Failure code {record.failure_code_id} does not exist"))
            if not failure_code.is_active:
                _check((False, f"Failure code {failure_code.code} is inactive"))
            if not provided.get('failure_code'):
                snapshots['failure_code'] = failure_code.code

        if record.root_cause_id and 'root_cause_id' in references:
            root_cause = self.taxonomy.get_root_cause(organization_id, record.root_cause_id)
            if root_cause is None:
                _check((False, f"Root cause {record.root_cause_id} does not exist"))
            if not provided.get('root_cause_code'):
                snapshots['root_cause_code'] = root_cause.code

        if record.action_taken_id and 'action_taken_id' in references:
            action = self.taxonomy.get_action_taken(organization_id, record.action_taken_id)
            if action is None:
                _check((False, f"Action taken {record.action_taken_id} does not exist"))
            if not provided.get('action_taken_code'):
                snapshots['action_taken_code'] = action.code

        return snapshots

    def _check_recurrence(self, organization_id: str, record: FailureRecord):
        """previous_failure_id must point at an earlier failure of the same equipment."""
        if not record.previous_failure_id:
            return
        if record.id and record.previous_failure_id == record.id:
            _check((False, "A failure record cannot recur from itself"))

        previous = self.get(organization_id, record.previous_failure_id)
        if previous is None:
            _check((False, f"Previous failure {record.previous_failure_id} does not exist"))
        if previous.equipment_id != record.equipment_id:
            _check((False, "Previous failure must belong to the same equipment"))

        previous_date = _date_key(previous.failure_date)
        current_date = _date_key(record.failure_date)
        if previous_date is None or current_date is None or not previous_date < current_date:
            _check((False, "Previous failure must have an earlier failure_date"))

    def _check_recurrences_of(self, organization_id: str, record: FailureRecord):
        """Records recurring from this one must stay later failures of the same equipment."""
        rows = self.store.select(TABLE, organization_id, [Predicate('previous_failure_id', record.id)])
        record_date = _date_key(record.failure_date)
        for later in (_to_record(row) for row in rows):
            if later.equipment_id != record.equipment_id:
                _check((False, f"Failure record {later.id} recurs from this record; "
                               f"equipment must stay {later.equipment_id}"))
            later_date = _date_key(later.failure_date)
            if record_date is None or later_date is None or not record_date < later_date:
                _check((False, f"Failure record {later.id} recurs from this record; "
                               f"failure_date must stay before {later.failure_date}"))

    @staticmethod
    def _build(values: Dict[str, Any]) -> FailureRecord:
        try:
            return FailureRecord(**values)
        except PydanticValidationError as e:
            logger.warning(f"Rejected failure record: {e}")
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError("Invalid failure record", {'errors': errors}) from e

    @staticmethod
    def _values(record: FailureRecord) -> Dict[str, Any]:
        return record.model_dump(mode='json', exclude=_SYSTEM_FIELDS)

    # -- writes --

    def create(self, organization_id: str, data) -> FailureRecord:
        """Validate and store a new failure record."""
        _require_scope(organization_id)
        data = _as_dict(data)
        data.pop('id', None)

        _check(validate_required_fields(data, REQUIRED_FIELDS))
        _check(validate_non_negative(data))
        _check(validate_failure_date(data.get('failure_date')))

        record = self._build(data)
        snapshots = self._resolve_taxonomy(organization_id, record, data)
        self._check_recurrence(organization_id, record)

        values = self._values(record)
        values.update(snapshots)
        if record.previous_failure_id:
            values['is_recurring'] = True

        stored = self.store.insert(TABLE, organization_id, values)
        logger.info(
            f"Failure record {stored['id']} created for equipment {record.equipment_id} "
            f"(organization {organization_id})"
        )
        return _to_record(stored)

    def update(self, organization_id: str, record_id: str, changes) -> Optional[FailureRecord]:
        """
        Amend a failure record. Returns None when the record does not exist.

        The record and its RCA linkage are re-read immediately before the
        lock check.
        """
        _require_scope(organization_id)
        changes = {k: v for k, v in _as_dict(changes).items()
                   if k in FailureRecord.model_fields and k not in _SYSTEM_FIELDS}

        current = self.get(organization_id, record_id)
        if current is None:
            return None

        _check(validate_non_negative(changes))
        merged = self._build({**current.model_dump(), **changes})

        locked = [f for f in LOCKED_FIELDS if getattr(merged, f) != getattr(current, f)]
        if locked and self.has_analyses(organization_id, record_id):
            logger.warning(f"Rejected update of locked fields {locked} on failure record {record_id}")
            raise ReferentialIntegrityError(
                f"Fields {', '.join(locked)} are locked once a root cause analysis references the record",
                {'failure_record_id': record_id, 'fields': locked}
            )

        if merged.failure_date != current.failure_date:
            _check(validate_failure_date(merged.failure_date))

        # Unchanged references keep their stored snapshot
        changed_references = [f for f in REFERENCE_FIELDS if getattr(merged, f) != getattr(current, f)]
        snapshots = self._resolve_taxonomy(organization_id, merged, changes, changed_references)

        if merged.previous_failure_id and (
                merged.previous_failure_id != current.previous_failure_id
                or merged.equipment_id != current.equipment_id
                or merged.failure_date != current.failure_date):
            self._check_recurrence(organization_id, merged)
        if merged.equipment_id != current.equipment_id or merged.failure_date != current.failure_date:
            self._check_recurrences_of(organization_id, merged)

        values = self._values(merged)
        values.update(snapshots)
        if merged.previous_failure_id:
            values['is_recurring'] = True

        stored = self.store.update(TABLE, organization_id, record_id, values)
        logger.info(f"Failure record {record_id} updated (organization {organization_id})")
        return _to_record(stored)

    def delete(self, organization_id: str, record_id: str, force: bool = False) -> bool:
        """
        Delete a failure record. Returns False when it does not exist.

        Without force, a record referenced by an RCA or by a later recurrence
        is kept and ReferentialIntegrityError is raised.
        """
        _require_scope(organization_id)
        current = self.get(organization_id, record_id)
        if current is None:
            return False

        analyses = self.store.count(RCA_TABLE, organization_id, [Predicate('failure_record_id', record_id)])
        recurrences = self.store.count(TABLE, organization_id, [Predicate('previous_failure_id', record_id)])
        if (analyses or recurrences) and not force:
            logger.warning(f"Rejected delete of referenced failure record {record_id}")
            raise ReferentialIntegrityError(
                "Failure record is referenced; pass force=True to delete it with its analyses",
                {'failure_record_id': record_id, 'analyses': analyses, 'recurrences': recurrences}
            )

        return cascade_delete_failure_records(self.store, organization_id, [record_id]) > 0

    # -- reads --

    def get(self, organization_id: str, record_id: str) -> Optional[FailureRecord]:
        return _to_record(self.store.select_one(TABLE, organization_id, record_id))

    def has_analyses(self, organization_id: str, record_id: str) -> bool:
        return self.store.count(RCA_TABLE, organization_id, [Predicate('failure_record_id', record_id)]) > 0

    def query(
        self,
        organization_id: str,
        equipment_id: Optional[str] = None,
        failure_code_id: Optional[str] = None,
        start_date: Any = None,
        end_date: Any = None,
        is_recurring: Optional[bool] = None,
        ascending: bool = False
    ) -> List[FailureRecord]:
        """
        Filter failure records. Ordered by failure_date, newest first by default.

        end_date includes the whole day.
        """
        if not organization_id:
            return []

        predicates = []
        if equipment_id:
            predicates.append(Predicate('equipment_id', equipment_id))
        if failure_code_id:
            predicates.append(Predicate('failure_code_id', failure_code_id))
        if start_date:
            if parse_date(start_date) is None:
                raise ValidationError(f"Invalid start_date: {start_date}")
            predicates.append(Predicate('failure_date', iso_date(start_date), Operator.GREATER_THAN_OR_EQUAL))
        if end_date:
            upper = next_day(end_date)
            if upper is None:
                raise ValidationError(f"Invalid end_date: {end_date}")
            predicates.append(Predicate('failure_date', upper, Operator.LESS_THAN))
        if is_recurring is not None:
            predicates.append(Predicate('is_recurring', bool(is_recurring)))

        rows = self.store.select(TABLE, organization_id, predicates,
                                 order_by='failure_date', descending=not ascending)
        return [_to_record(row) for row in rows]

    def failures_by_equipment(self, organization_id: str, equipment_id: str) -> List[FailureRecord]:
        if not equipment_id:
            return []
        return self.query(organization_id, equipment_id=equipment_id)

    def recurring_failures(self, organization_id: str) -> List[FailureRecord]:
        return self.query(organization_id, is_recurring=True)

    def recurrence_chain(self, organization_id: str, record_id: str) -> List[FailureRecord]:
        """Walk previous_failure_id back from a record. Oldest first."""
        chain = []
        seen = set()
        current = self.get(organization_id, record_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            current = self.get(organization_id, current.previous_failure_id) \
                if current.previous_failure_id else None
        chain.reverse()
        return chain
