"""Input validation utilities for the failure analytics engine."""
import re
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Tuple, Type

MEASURE_FIELDS = ('downtime_hours', 'repair_hours', 'parts_cost', 'labor_cost')
ORGANIZATION_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.:-]+$')
MAX_ORGANIZATION_ID_LENGTH = 64
# Longest date-only ISO form (2026-09-01, 2026-W35-2); any time part makes it longer
MAX_DATE_ONLY_LENGTH = 10


def parse_date(date_value: Any) -> Optional[datetime]:
    """Parse date from various formats."""
    if date_value is None:
        return None
    if isinstance(date_value, datetime):
        return date_value
    if isinstance(date_value, date):
        return datetime(date_value.year, date_value.month, date_value.day)
    if isinstance(date_value, str):
        try:
            # Try ISO format first
            return datetime.fromisoformat(date_value.replace('Z', '+00:00'))
        except ValueError:
            try:
                return datetime.strptime(date_value, '%Y-%m-%d')
            except ValueError:
                return None
    return None


def is_date_only(date_value: Any) -> bool:
    """True for date objects and ISO strings without a time part."""
    if isinstance(date_value, datetime):
        return False
    if isinstance(date_value, date):
        return True
    return isinstance(date_value, str) and len(date_value.strip()) <= MAX_DATE_ONLY_LENGTH


def normalize_date(date_value: Any) -> Optional[str]:
    """
    Canonical ISO-8601 text for a date or datetime value.

    Date-only values become YYYY-MM-DD, so 20260901 is stored as 2026-09-01.
    Unparseable strings are returned stripped for the caller to reject.
    """
    if date_value is None:
        return None
    parsed = parse_date(date_value.strip() if isinstance(date_value, str) else date_value)
    if parsed is None:
        return str(date_value).strip()
    if is_date_only(date_value):
        return parsed.date().isoformat()
    return parsed.isoformat()


def next_day(date_value: Any) -> Optional[str]:
    """ISO date of the day after date_value; used for inclusive end-of-day bounds."""
    parsed = parse_date(date_value)
    if parsed is None:
        return None
    return (parsed.date() + timedelta(days=1)).isoformat()


def validate_organization_id(organization_id: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate the organization scope.
    Returns (is_valid, error_message).
    """
    if not organization_id:
        return False, "Organization scope is required"
    if not isinstance(organization_id, str):
        return False, "Organization ID must be a string"
    if len(organization_id) > MAX_ORGANIZATION_ID_LENGTH:
        return False, "Organization ID is too long"
    if not ORGANIZATION_ID_PATTERN.match(organization_id):
        return False, "Organization ID contains invalid characters"
    return True, None


def validate_required_fields(data: dict, fields: Iterable[str]) -> Tuple[bool, Optional[str]]:
    """
    Check that every named field is present and non-empty.
    Returns (is_valid, error_message).
    """
    if not data or not isinstance(data, dict):
        return False, "Request body is required"
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        return False, f"Missing required field(s): {', '.join(missing)}"
    return True, None


def validate_non_negative(data: dict, fields: Iterable[str] = MEASURE_FIELDS) -> Tuple[bool, Optional[str]]:
    """
    Validate cost/time measures.
    Returns (is_valid, error_message).
    """
    for field_name in fields:
        value = data.get(field_name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False, f"{field_name} must be a number"
        if value < 0:
            return False, f"{field_name} must not be negative"
    return True, None


def validate_failure_date(value: Any, now: Optional[datetime] = None) -> Tuple[bool, Optional[str]]:
    """
    Validate a failure date: parseable and not in the future.

    Date-only values are compared against today, datetimes against now.
    Returns (is_valid, error_message).
    """
    if value in (None, ''):
        return False, "failure_date is required"
    parsed = parse_date(value)
    if parsed is None:
        return False, "failure_date is not a valid ISO-8601 date"

    now = now or datetime.now()
    if is_date_only(value):
        if parsed.date() > now.date():
            return False, "failure_date must not be in the future"
    else:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        if parsed > now:
            return False, "failure_date must not be in the future"
    return True, None


def validate_enum(value: Any, enum_cls: Type[Enum], field_name: str) -> Tuple[bool, Optional[str]]:
    """
    Validate that value is one of the members of enum_cls.
    Returns (is_valid, error_message).
    """
    allowed = [member.value for member in enum_cls]
    raw = value.value if isinstance(value, Enum) else value
    if raw not in allowed:
        return False, f"{field_name} must be one of: {', '.join(allowed)}"
    return True, None


def validate_configuration(data: dict) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration payload.
    Returns (is_valid, error_message).
    """
    if not data:
        return False, "Configuration data is required"
    if not isinstance(data, dict):
        return False, "Configuration must be an object"

    if 'operating_hours' in data:
        settings = data['operating_hours']
        if not isinstance(settings, dict):
            return False, "operating_hours must be an object"
        for key in ('hours_per_year', 'hours_per_month'):
            if key in settings:
                hours = settings[key]
                if isinstance(hours, bool) or not isinstance(hours, (int, float)) or hours <= 0:
                    return False, f"{key} in operating_hours must be a positive number"

    for key in ('trend_window_months', 'ranking_limit'):
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                return False, f"{key} must be a positive integer"

    return True, None
