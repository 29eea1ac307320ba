from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from .validators import normalize_date


# --- Closed vocabularies ---

class FailureCodeCategory(str, Enum):
    MECHANICAL = 'mechanical'
    ELECTRICAL = 'electrical'
    HYDRAULIC = 'hydraulic'
    PNEUMATIC = 'pneumatic'
    INSTRUMENTATION = 'instrumentation'
    STRUCTURAL = 'structural'
    PROCESS = 'process'
    OPERATOR = 'operator'
    EXTERNAL = 'external'
    SOFTWARE = 'software'
    OPERATOR_ERROR = 'operator_error'
    ENVIRONMENTAL = 'environmental'
    MATERIAL = 'material'
    OTHER = 'other'


class FailureSeverity(str, Enum):
    MINOR = 'minor'
    MODERATE = 'moderate'
    MAJOR = 'major'
    CRITICAL = 'critical'


class RootCauseCategory(str, Enum):
    EQUIPMENT = 'equipment'
    PROCESS = 'process'
    PEOPLE = 'people'
    MATERIALS = 'materials'
    ENVIRONMENT = 'environment'
    MANAGEMENT = 'management'


class ActionItemStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class RCAStatus(str, Enum):
    DRAFT = 'draft'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    VERIFIED = 'verified'


def iso_date(value: Union[str, date, datetime, None]) -> Optional[str]:
    """Normalize date/datetime inputs to canonical ISO-8601 strings."""
    return normalize_date(value)


# --- Taxonomy ---

class FailureCode(BaseModel):
    id: Optional[str] = None
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: FailureCodeCategory
    severity: FailureSeverity
    common_causes: List[str] = []
    suggested_actions: List[str] = []
    mttr_hours: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RootCause(BaseModel):
    id: Optional[str] = None
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: RootCauseCategory
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ActionTaken(BaseModel):
    id: Optional[str] = None
    code: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str = ""
    category: str = "general"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Failure events ---

class FailureRecord(BaseModel):
    """
    A discrete failure event on one equipment unit.

    equipment_name, failure_code, root_cause_code and action_taken_code are
    snapshots taken when the record was written. They are not kept in sync
    with later renames of the canonical entity.
    """
    id: Optional[str] = None
    work_order_id: Optional[str] = None
    work_order_number: Optional[str] = None
    equipment_id: str = Field(..., min_length=1)
    equipment_name: str = ""
    failure_code_id: str = Field(..., min_length=1)
    failure_code: str = ""
    root_cause_id: Optional[str] = None
    root_cause_code: Optional[str] = None
    action_taken_id: Optional[str] = None
    action_taken_code: Optional[str] = None
    failure_date: str
    reported_by: str = ""
    reported_by_name: str = ""
    description: str = ""
    downtime_hours: float = Field(0.0, ge=0)
    repair_hours: float = Field(0.0, ge=0)
    parts_cost: float = Field(0.0, ge=0)
    labor_cost: float = Field(0.0, ge=0)
    # Quick-view notes, independent of the structured RCA record
    five_whys: List[str] = []
    corrective_actions: List[str] = []
    preventive_actions: List[str] = []
    is_recurring: bool = False
    previous_failure_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator('failure_date', mode='before')
    @classmethod
    def normalize_failure_date(cls, value):
        return iso_date(value)

    @property
    def total_cost(self) -> float:
        return self.parts_cost + self.labor_cost


# --- Root cause analysis ---

class ActionItem(BaseModel):
    action: str = Field(..., min_length=1)
    responsible: str = ""
    due_date: Optional[str] = None
    status: ActionItemStatus = ActionItemStatus.PENDING
    completed_date: Optional[str] = None

    @field_validator('due_date', 'completed_date', mode='before')
    @classmethod
    def normalize_dates(cls, value):
        return iso_date(value)


class RootCauseAnalysis(BaseModel):
    id: Optional[str] = None
    failure_record_id: str = Field(..., min_length=1)
    equipment_id: str = ""
    equipment_name: str = ""
    analysis_date: Optional[str] = None
    performed_by: str = ""
    performed_by_name: str = ""
    problem_statement: str = ""
    root_cause_category: Optional[RootCauseCategory] = None
    root_cause_id: Optional[str] = None
    five_whys: List[str] = []
    contributing_factors: List[str] = []
    corrective_actions: List[ActionItem] = []
    preventive_actions: List[ActionItem] = []
    verification_required: bool = False
    verification_date: Optional[str] = None
    verified_by: Optional[str] = None
    status: RCAStatus = RCAStatus.DRAFT
    attachments: List[str] = []
    notes: Optional[str] = None
    supersedes_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator('analysis_date', 'verification_date', mode='before')
    @classmethod
    def normalize_dates(cls, value):
        return iso_date(value)


# --- Display metadata for the closed vocabularies ---

FAILURE_CATEGORY_INFO = {
    FailureCodeCategory.MECHANICAL: ('Mechanical', 'Mechanical failures'),
    FailureCodeCategory.ELECTRICAL: ('Electrical', 'Electrical failures'),
    FailureCodeCategory.HYDRAULIC: ('Hydraulic', 'Hydraulic system failures'),
    FailureCodeCategory.PNEUMATIC: ('Pneumatic', 'Pneumatic system failures'),
    FailureCodeCategory.INSTRUMENTATION: ('Instrumentation', 'Sensor and instrument failures'),
    FailureCodeCategory.STRUCTURAL: ('Structural', 'Structural failures'),
    FailureCodeCategory.PROCESS: ('Process', 'Process upsets'),
    FailureCodeCategory.OPERATOR: ('Operator', 'Operator-initiated failures'),
    FailureCodeCategory.EXTERNAL: ('External', 'External causes'),
    FailureCodeCategory.SOFTWARE: ('Software', 'Software/PLC failures'),
    FailureCodeCategory.OPERATOR_ERROR: ('Operator Error', 'Human error'),
    FailureCodeCategory.ENVIRONMENTAL: ('Environmental', 'Environmental factors'),
    FailureCodeCategory.MATERIAL: ('Material', 'Material defects'),
    FailureCodeCategory.OTHER: ('Other', 'Other failures'),
}

ROOT_CAUSE_CATEGORY_INFO = {
    RootCauseCategory.EQUIPMENT: ('Equipment', 'Equipment-related causes'),
    RootCauseCategory.PROCESS: ('Process', 'Process-related causes'),
    RootCauseCategory.PEOPLE: ('People', 'People-related causes'),
    RootCauseCategory.MATERIALS: ('Materials', 'Material-related causes'),
    RootCauseCategory.ENVIRONMENT: ('Environment', 'Environmental causes'),
    RootCauseCategory.MANAGEMENT: ('Management', 'Management-related causes'),
}

SEVERITY_INFO = {
    FailureSeverity.MINOR: ('Minor', 'No significant production impact'),
    FailureSeverity.MODERATE: ('Moderate', 'Workaround available'),
    FailureSeverity.MAJOR: ('Major', 'Significant production impact'),
    FailureSeverity.CRITICAL: ('Critical', 'Safety/environmental impact or production stop'),
}
