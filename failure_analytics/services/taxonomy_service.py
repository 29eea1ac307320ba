"""
Taxonomy Store

Closed vocabularies used to classify failures:
- failure codes (category, severity, common causes, suggested actions)
- root-cause codes grouped by category
- action-taken codes

Read-mostly reference data, scoped per organization. A failure code that
failure records reference is never removed silently: delete raises
ReferentialIntegrityError unless force=True, which cascades.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError as PydanticValidationError

from ..errors import ReferentialIntegrityError, ValidationError
from ..models import (
    ActionTaken,
    FailureCode,
    FailureCodeCategory,
    FailureSeverity,
    RootCause,
    RootCauseCategory,
    FAILURE_CATEGORY_INFO,
    ROOT_CAUSE_CATEGORY_INFO,
    SEVERITY_INFO,
)
from ..store import Predicate
from ..validators import validate_enum, validate_organization_id
from .failure_record_service import cascade_delete_failure_records

logger = logging.getLogger(__name__)

FAILURE_CODES = 'failure_codes'
ROOT_CAUSES = 'root_causes'
ACTIONS_TAKEN = 'actions_taken'
FAILURE_RECORDS = 'failure_records'

_SYSTEM_FIELDS = {'id', 'created_at', 'updated_at'}


def _vocabulary(info: Dict) -> List[Dict[str, str]]:
    return [
        {'id': member.value, 'name': name, 'description': description}
        for member, (name, description) in info.items()
    ]


class TaxonomyService:
    """Failure code, root cause and action-taken vocabularies for an organization."""

    def __init__(self, store):
        self.store = store

    # -- closed enumerations --

    @staticmethod
    def failure_categories() -> List[Dict[str, str]]:
        return _vocabulary(FAILURE_CATEGORY_INFO)

    @staticmethod
    def root_cause_categories() -> List[Dict[str, str]]:
        return _vocabulary(ROOT_CAUSE_CATEGORY_INFO)

    @staticmethod
    def severities() -> List[Dict[str, str]]:
        return _vocabulary(SEVERITY_INFO)

    # -- shared helpers --

    @staticmethod
    def _require_scope(organization_id: str):
        is_valid, error = validate_organization_id(organization_id)
        if not is_valid:
            raise ValidationError(error)

    @staticmethod
    def _build(model: Type[BaseModel], values: Dict[str, Any]):
        try:
            return model(**values)
        except PydanticValidationError as e:
            logger.warning(f"Rejected {model.__name__}: {e}")
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise ValidationError(f"Invalid {model.__name__}", {'errors': errors}) from e

    def _find_by_code(self, table: str, organization_id: str, code: str) -> Optional[Dict[str, Any]]:
        rows = self.store.select(table, organization_id, [Predicate('code', code)])
        return rows[0] if rows else None

    def _create(self, table: str, model: Type[BaseModel], organization_id: str, data: Dict[str, Any]):
        self._require_scope(organization_id)
        if not isinstance(data, dict):
            raise ValidationError(f"{model.__name__} data must be an object")
        entry = self._build(model, {k: v for k, v in data.items() if k not in _SYSTEM_FIELDS})

        if self._find_by_code(table, organization_id, entry.code):
            logger.warning(f"Rejected duplicate {model.__name__} code {entry.code}")
            raise ValidationError(f"Code {entry.code} already exists", {'code': entry.code})

        stored = self.store.insert(table, organization_id, entry.model_dump(mode='json', exclude=_SYSTEM_FIELDS))
        logger.info(f"{model.__name__} {entry.code} created (organization {organization_id})")
        return model(**stored)

    def _get(self, table: str, model: Type[BaseModel], organization_id: str, entry_id: str):
        row = self.store.select_one(table, organization_id, entry_id)
        return model(**row) if row else None

    # -- failure codes --

    def list_failure_codes(
        self,
        organization_id: str,
        category: Optional[str] = None,
        severity: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> List[FailureCode]:
        """Failure codes ordered by code."""
        predicates = []
        if category:
            is_valid, error = validate_enum(category, FailureCodeCategory, 'category')
            if not is_valid:
                raise ValidationError(error)
            predicates.append(Predicate('category', category))
        if severity:
            is_valid, error = validate_enum(severity, FailureSeverity, 'severity')
            if not is_valid:
                raise ValidationError(error)
            predicates.append(Predicate('severity', severity))
        if is_active is not None:
            predicates.append(Predicate('is_active', bool(is_active)))

        rows = self.store.select(FAILURE_CODES, organization_id, predicates, order_by='code')
        return [FailureCode(**row) for row in rows]

    def get_failure_code(self, organization_id: str, code_id: str) -> Optional[FailureCode]:
        return self._get(FAILURE_CODES, FailureCode, organization_id, code_id)

    def get_failure_code_by_code(self, organization_id: str, code: str) -> Optional[FailureCode]:
        row = self._find_by_code(FAILURE_CODES, organization_id, code) if organization_id and code else None
        return FailureCode(**row) if row else None

    def create_failure_code(self, organization_id: str, data: Dict[str, Any]) -> FailureCode:
        return self._create(FAILURE_CODES, FailureCode, organization_id, data)

    def update_failure_code(self, organization_id: str, code_id: str,
                            changes: Dict[str, Any]) -> Optional[FailureCode]:
        """
        Edit a failure code. Returns None when it does not exist.

        Failure records keep the code string they were written with.
        """
        self._require_scope(organization_id)
        current = self.get_failure_code(organization_id, code_id)
        if current is None:
            return None

        changes = {k: v for k, v in changes.items() if k in FailureCode.model_fields and k not in _SYSTEM_FIELDS}
        updated = self._build(FailureCode, {**current.model_dump(), **changes})
        if updated.code != current.code and self._find_by_code(FAILURE_CODES, organization_id, updated.code):
            raise ValidationError(f"Code {updated.code} already exists", {'code': updated.code})

        stored = self.store.update(
            FAILURE_CODES, organization_id, code_id,
            updated.model_dump(mode='json', exclude=_SYSTEM_FIELDS)
        )
        logger.info(f"Failure code {updated.code} updated (organization {organization_id})")
        return FailureCode(**stored) if stored else None

    def deactivate_failure_code(self, organization_id: str, code_id: str) -> Optional[FailureCode]:
        """Soft-disable a failure code; existing records are untouched."""
        return self.update_failure_code(organization_id, code_id, {'is_active': False})

    def delete_failure_code(self, organization_id: str, code_id: str, force: bool = False) -> bool:
        """
        Delete a failure code. Returns False when it does not exist.

        Referenced codes are rejected unless force=True, in which case the
        referencing failure records and their RCA records are removed first.
        """
        self._require_scope(organization_id)
        current = self.get_failure_code(organization_id, code_id)
        if current is None:
            return False

        referencing = self.store.select(FAILURE_RECORDS, organization_id, [Predicate('failure_code_id', code_id)])
        if referencing and not force:
            logger.warning(f"Rejected delete of failure code {current.code}: {len(referencing)} record(s) reference it")
            raise ReferentialIntegrityError(
                f"Failure code {current.code} is referenced by {len(referencing)} failure record(s)",
                {'failure_code_id': code_id, 'references': len(referencing)}
            )

        if referencing:
            cascade_delete_failure_records(self.store, organization_id, [r['id'] for r in referencing])
        deleted = self.store.delete(FAILURE_CODES, organization_id, code_id)
        logger.info(f"Failure code {current.code} deleted (organization {organization_id}, force={force})")
        return deleted

    # -- root causes --

    def list_root_causes(self, organization_id: str, category: Optional[str] = None) -> List[RootCause]:
        predicates = []
        if category:
            is_valid, error = validate_enum(category, RootCauseCategory, 'category')
            if not is_valid:
                raise ValidationError(error)
            predicates.append(Predicate('category', category))
        rows = self.store.select(ROOT_CAUSES, organization_id, predicates, order_by='code')
        return [RootCause(**row) for row in rows]

    def get_root_cause(self, organization_id: str, root_cause_id: str) -> Optional[RootCause]:
        return self._get(ROOT_CAUSES, RootCause, organization_id, root_cause_id)

    def create_root_cause(self, organization_id: str, data: Dict[str, Any]) -> RootCause:
        return self._create(ROOT_CAUSES, RootCause, organization_id, data)

    # -- actions taken --

    def list_actions_taken(self, organization_id: str) -> List[ActionTaken]:
        rows = self.store.select(ACTIONS_TAKEN, organization_id, order_by='code')
        return [ActionTaken(**row) for row in rows]

    def get_action_taken(self, organization_id: str, action_id: str) -> Optional[ActionTaken]:
        return self._get(ACTIONS_TAKEN, ActionTaken, organization_id, action_id)

    def create_action_taken(self, organization_id: str, data: Dict[str, Any]) -> ActionTaken:
        return self._create(ACTIONS_TAKEN, ActionTaken, organization_id, data)
