"""
Root Cause Analysis Workflow

Structured investigations attached to failure records. Status moves one
step forward at a time:

    draft -> in_progress -> completed -> verified

- in_progress requires a problem statement
- completed requires every corrective action item to have left pending
- verified is only reachable from completed, and only when verification
  is required; otherwise completed is terminal
- verified records are immutable

Nothing moves backward. A reversal request produces a new draft revision
pointing back at the original via supersedes_id.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import StateTransitionError, ValidationError
from ..models import ActionItem, ActionItemStatus, RCAStatus, RootCauseAnalysis
from ..store import Predicate
from ..validators import validate_enum, validate_organization_id

logger = logging.getLogger(__name__)

TABLE = 'root_cause_analyses'

STATUS_ORDER = [RCAStatus.DRAFT, RCAStatus.IN_PROGRESS, RCAStatus.COMPLETED, RCAStatus.VERIFIED]
ITEM_STATUS_ORDER = [ActionItemStatus.PENDING, ActionItemStatus.IN_PROGRESS, ActionItemStatus.COMPLETED]
ACTION_ITEM_KINDS = ('corrective', 'preventive')

# Fields set only by the workflow itself
_WORKFLOW_FIELDS = {'id', 'created_at', 'updated_at', 'status', 'verified_by', 'verification_date'}

# Investigation content carried over into a revision
_REVISION_FIELDS = (
    'performed_by', 'performed_by_name', 'problem_statement', 'root_cause_category',
    'root_cause_id', 'five_whys', 'contributing_factors', 'corrective_actions',
    'preventive_actions', 'verification_required', 'attachments', 'notes',
)


def _now() -> str:
    return datetime.now().isoformat(timespec='seconds')


def _to_analysis(row: Optional[Dict[str, Any]]) -> Optional[RootCauseAnalysis]:
    return RootCauseAnalysis(**row) if row else None


def _build(values: Dict[str, Any]) -> RootCauseAnalysis:
    try:
        return RootCauseAnalysis(**values)
    except PydanticValidationError as e:
        logger.warning(f"Rejected root cause analysis: {e}")
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError("Invalid root cause analysis", {'errors': errors}) from e


def _check_completed_dates(analysis: RootCauseAnalysis):
    for kind in ACTION_ITEM_KINDS:
        for index, item in enumerate(getattr(analysis, f"{kind}_actions")):
            if item.status == ActionItemStatus.COMPLETED and not item.completed_date:
                raise ValidationError(
                    f"Completed {kind} action item {index} must carry completed_date",
                    {'kind': kind, 'index': index}
                )


def _items_field(kind: str) -> str:
    if kind not in ACTION_ITEM_KINDS:
        raise ValidationError(f"Action item kind must be one of: {', '.join(ACTION_ITEM_KINDS)}")
    return f"{kind}_actions"


class RootCauseAnalysisService:
    """RCA records and their status workflow, scoped per organization."""

    def __init__(self, store, records):
        self.store = store
        self.records = records

    # -- helpers --

    @staticmethod
    def _require_scope(organization_id: str):
        is_valid, error = validate_organization_id(organization_id)
        if not is_valid:
            raise ValidationError(error)

    @staticmethod
    def _ensure_mutable(analysis: RootCauseAnalysis):
        if analysis.status == RCAStatus.VERIFIED:
            raise StateTransitionError(
                "Verified analyses are immutable; create a revision instead",
                {'rca_id': analysis.id}
            )

    @staticmethod
    def _ensure_completion_holds(current: RootCauseAnalysis, merged: RootCauseAnalysis):
        """A completed analysis keeps its verification flag and has no pending corrective items."""
        if current.status != RCAStatus.COMPLETED:
            return
        if merged.verification_required != current.verification_required:
            logger.warning(f"Rejected change of verification_required on completed RCA {current.id}")
            raise StateTransitionError(
                "verification_required is fixed once the analysis is completed; create a revision instead",
                {'rca_id': current.id}
            )
        pending = [i for i, item in enumerate(merged.corrective_actions)
                   if item.status == ActionItemStatus.PENDING]
        if pending:
            logger.warning(f"Rejected pending corrective action items on completed RCA {current.id}")
            raise StateTransitionError(
                "Completed analyses cannot carry pending corrective action items",
                {'rca_id': current.id, 'pending_items': pending}
            )

    def _save(self, organization_id: str, analysis: RootCauseAnalysis,
              changes: Dict[str, Any]) -> RootCauseAnalysis:
        stored = self.store.update(TABLE, organization_id, analysis.id, changes)
        return _to_analysis(stored)

    def _move(self, organization_id: str, analysis: RootCauseAnalysis, target: RCAStatus,
              extra: Optional[Dict[str, Any]] = None) -> RootCauseAnalysis:
        expected = STATUS_ORDER[STATUS_ORDER.index(target) - 1]
        if analysis.status != expected:
            logger.warning(f"Rejected RCA {analysis.id} transition {analysis.status.value} -> {target.value}")
            raise StateTransitionError(
                f"Cannot move from {analysis.status.value} to {target.value}",
                {'rca_id': analysis.id, 'from': analysis.status.value, 'to': target.value}
            )
        changes = {'status': target.value}
        changes.update(extra or {})
        updated = self._save(organization_id, analysis, changes)
        logger.info(f"RCA {analysis.id} moved to {target.value} (organization {organization_id})")
        return updated

    # -- records --

    def create(self, organization_id: str, data: Dict[str, Any]) -> RootCauseAnalysis:
        """
        Open a new draft analysis for a failure record.

        The failure record is re-read here and must exist; its equipment is
        copied onto the analysis.
        """
        self._require_scope(organization_id)
        if not isinstance(data, dict):
            raise ValidationError("Root cause analysis data must be an object")
        values = {k: v for k, v in data.items() if k not in _WORKFLOW_FIELDS}

        failure_record_id = values.get('failure_record_id')
        if not failure_record_id:
            raise ValidationError("failure_record_id is required")
        failure = self.records.get(organization_id, failure_record_id)
        if failure is None:
            raise ValidationError(f"Failure record {failure_record_id} does not exist")

        values['equipment_id'] = failure.equipment_id
        values['equipment_name'] = failure.equipment_name
        values['status'] = RCAStatus.DRAFT
        if not values.get('analysis_date'):
            values['analysis_date'] = date.today().isoformat()

        analysis = _build(values)
        _check_completed_dates(analysis)

        stored = self.store.insert(
            TABLE, organization_id,
            analysis.model_dump(mode='json', exclude={'id', 'created_at', 'updated_at'})
        )
        logger.info(f"RCA {stored['id']} opened for failure record {failure_record_id} (organization {organization_id})")
        return _to_analysis(stored)

    def get(self, organization_id: str, rca_id: str) -> Optional[RootCauseAnalysis]:
        return _to_analysis(self.store.select_one(TABLE, organization_id, rca_id))

    def list(
        self,
        organization_id: str,
        failure_record_id: Optional[str] = None,
        equipment_id: Optional[str] = None,
        status: Optional[str] = None
    ) -> List[RootCauseAnalysis]:
        """Analyses ordered by analysis_date, newest first."""
        predicates = []
        if failure_record_id:
            predicates.append(Predicate('failure_record_id', failure_record_id))
        if equipment_id:
            predicates.append(Predicate('equipment_id', equipment_id))
        if status:
            is_valid, error = validate_enum(status, RCAStatus, 'status')
            if not is_valid:
                raise ValidationError(error)
            predicates.append(Predicate('status', status))
        rows = self.store.select(TABLE, organization_id, predicates, order_by='analysis_date', descending=True)
        return [_to_analysis(row) for row in rows]

    def update(self, organization_id: str, rca_id: str,
               changes: Dict[str, Any]) -> Optional[RootCauseAnalysis]:
        """
        Edit analysis content. Status changes go through the transitions.

        Action items may only move forward; items newly marked completed
        are stamped with the current time.
        """
        self._require_scope(organization_id)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        self._ensure_mutable(current)

        if 'status' in changes and changes['status'] != current.status.value:
            raise StateTransitionError(
                "Status cannot be edited directly; use a workflow transition",
                {'rca_id': rca_id}
            )
        if changes.get('failure_record_id') not in (None, current.failure_record_id):
            raise ValidationError("failure_record_id cannot be changed", {'rca_id': rca_id})

        values = {k: v for k, v in changes.items()
                  if k in RootCauseAnalysis.model_fields and k not in _WORKFLOW_FIELDS
                  and k not in ('failure_record_id', 'equipment_id', 'equipment_name', 'supersedes_id')}
        merged = _build({**current.model_dump(), **values})
        self._ensure_completion_holds(current, merged)

        for kind in ACTION_ITEM_KINDS:
            field_name = f"{kind}_actions"
            if field_name not in values:
                continue
            before = getattr(current, field_name)
            for index, item in enumerate(getattr(merged, field_name)):
                previous = before[index].status if index < len(before) else ActionItemStatus.PENDING
                if ITEM_STATUS_ORDER.index(item.status) < ITEM_STATUS_ORDER.index(previous):
                    raise StateTransitionError(
                        f"{kind.capitalize()} action item {index} cannot move back to {item.status.value}",
                        {'kind': kind, 'index': index}
                    )
                if item.status == ActionItemStatus.COMPLETED and not item.completed_date:
                    item.completed_date = _now()

        updated = self._save(
            organization_id, current,
            merged.model_dump(mode='json', exclude=_WORKFLOW_FIELDS)
        )
        logger.info(f"RCA {rca_id} updated (organization {organization_id})")
        return updated

    # -- workflow --

    def start(self, organization_id: str, rca_id: str) -> Optional[RootCauseAnalysis]:
        """draft -> in_progress; needs a problem statement."""
        self._require_scope(organization_id)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        if current.status == RCAStatus.DRAFT and not current.problem_statement.strip():
            raise StateTransitionError("A problem statement is required to start the analysis", {'rca_id': rca_id})
        return self._move(organization_id, current, RCAStatus.IN_PROGRESS)

    def complete(self, organization_id: str, rca_id: str) -> Optional[RootCauseAnalysis]:
        """in_progress -> completed; every corrective item must have left pending."""
        self._require_scope(organization_id)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        if current.status == RCAStatus.IN_PROGRESS:
            pending = [i for i, item in enumerate(current.corrective_actions)
                       if item.status == ActionItemStatus.PENDING]
            if pending:
                raise StateTransitionError(
                    "Corrective action items are still pending",
                    {'rca_id': rca_id, 'pending_items': pending}
                )
        return self._move(organization_id, current, RCAStatus.COMPLETED)

    def verify(self, organization_id: str, rca_id: str, verified_by: str,
               verification_date: Any = None) -> Optional[RootCauseAnalysis]:
        """completed -> verified; only when verification is required."""
        self._require_scope(organization_id)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        if not current.verification_required:
            logger.warning(f"Rejected verification of RCA {rca_id}: verification not required")
            raise StateTransitionError(
                "Verification is not required for this analysis; completed is terminal",
                {'rca_id': rca_id}
            )
        if current.status == RCAStatus.COMPLETED and not verified_by:
            raise ValidationError("verified_by is required")

        verification_date = verification_date or date.today()
        if isinstance(verification_date, (date, datetime)):
            verification_date = verification_date.isoformat()
        return self._move(organization_id, current, RCAStatus.VERIFIED, {
            'verified_by': verified_by,
            'verification_date': verification_date,
        })

    def transition(self, organization_id: str, rca_id: str, target: str,
                   **kwargs) -> Optional[RootCauseAnalysis]:
        """Dispatch a status change by target name."""
        is_valid, error = validate_enum(target, RCAStatus, 'status')
        if not is_valid:
            raise ValidationError(error)
        target = RCAStatus(target)

        if target == RCAStatus.IN_PROGRESS:
            return self.start(organization_id, rca_id)
        if target == RCAStatus.COMPLETED:
            return self.complete(organization_id, rca_id)
        if target == RCAStatus.VERIFIED:
            return self.verify(organization_id, rca_id, kwargs.get('verified_by'),
                               kwargs.get('verification_date'))

        # Only draft is left, and nothing moves back to draft
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        raise StateTransitionError(
            "Analyses cannot return to draft; create a revision instead",
            {'rca_id': rca_id, 'from': current.status.value, 'to': target.value}
        )

    # -- action items --

    def set_action_item_status(self, organization_id: str, rca_id: str, kind: str,
                               index: int, status: str) -> Optional[RootCauseAnalysis]:
        """Move one action item forward; completing it stamps completed_date."""
        self._require_scope(organization_id)
        field_name = _items_field(kind)
        is_valid, error = validate_enum(status, ActionItemStatus, 'status')
        if not is_valid:
            raise ValidationError(error)
        status = ActionItemStatus(status)

        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        self._ensure_mutable(current)

        items = getattr(current, field_name)
        if index < 0 or index >= len(items):
            raise ValidationError(f"No {kind} action item at index {index}", {'kind': kind, 'index': index})
        item = items[index]

        if ITEM_STATUS_ORDER.index(status) < ITEM_STATUS_ORDER.index(item.status):
            raise StateTransitionError(
                f"{kind.capitalize()} action item {index} cannot move from {item.status.value} to {status.value}",
                {'kind': kind, 'index': index}
            )
        if status == item.status:
            return current

        item.status = status
        if status == ActionItemStatus.COMPLETED:
            item.completed_date = _now()

        logger.info(f"RCA {rca_id} {kind} action item {index} -> {status.value}")
        return self._save(organization_id, current, {field_name: [i.model_dump(mode='json') for i in items]})

    def add_action_item(self, organization_id: str, rca_id: str, kind: str,
                        item: Dict[str, Any]) -> Optional[RootCauseAnalysis]:
        self._require_scope(organization_id)
        field_name = _items_field(kind)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None
        self._ensure_mutable(current)

        try:
            new_item = ActionItem(**item) if isinstance(item, dict) else ActionItem.model_validate(item)
        except PydanticValidationError as e:
            raise ValidationError("Invalid action item", {'errors': [err['msg'] for err in e.errors()]}) from e
        if new_item.status == ActionItemStatus.COMPLETED and not new_item.completed_date:
            raise ValidationError("Completed action items must carry completed_date")

        items = getattr(current, field_name) + [new_item]
        self._ensure_completion_holds(current, current.model_copy(update={field_name: items}))
        return self._save(organization_id, current, {field_name: [i.model_dump(mode='json') for i in items]})

    # -- revisions --

    def revise(self, organization_id: str, rca_id: str,
               performed_by: Optional[str] = None) -> Optional[RootCauseAnalysis]:
        """
        Open a new draft revision of an analysis.

        The original keeps its status; the revision copies its content and
        records the original in supersedes_id.
        """
        self._require_scope(organization_id)
        current = self.get(organization_id, rca_id)
        if current is None:
            return None

        content = current.model_dump(mode='json', include=set(_REVISION_FIELDS))
        content['failure_record_id'] = current.failure_record_id
        content['supersedes_id'] = current.id
        if performed_by:
            content['performed_by'] = performed_by

        revision = self.create(organization_id, content)
        logger.info(f"RCA {rca_id} revised as {revision.id}")
        return revision
