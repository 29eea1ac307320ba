"""
Error taxonomy for the failure analytics engine.

Every error is scoped to the single operation that raised it:
- ValidationError: rejected input, raised before any write
- ReferentialIntegrityError: delete/mutation of an entity referenced elsewhere
- StateTransitionError: illegal RCA workflow transition
- StoreUnavailableError: record store unreachable or schema missing

Store unavailability is surfaced to the caller as-is; nothing here retries.
"""

from typing import Optional, Dict, Any


class FailureAnalyticsError(Exception):
    """Base exception carrying a machine-readable code and context."""

    code = 'INTERNAL_ERROR'
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization"""
        payload = {
            'code': self.code,
            'message': self.message,
        }
        if self.context:
            payload['context'] = self.context
        return payload


class ValidationError(FailureAnalyticsError):
    """Missing required field, negative measure, future date, bad back-reference."""

    code = 'VALIDATION_ERROR'
    status_code = 400


class ReferentialIntegrityError(FailureAnalyticsError):
    """Entity is referenced elsewhere and the operation was not forced."""

    code = 'REFERENTIAL_INTEGRITY'
    status_code = 409


class StateTransitionError(FailureAnalyticsError):
    """RCA status change not permitted by the workflow."""

    code = 'INVALID_STATE_TRANSITION'
    status_code = 409


class StoreUnavailableError(FailureAnalyticsError):
    """
    The record store could not serve the request.

    Raised for unreachable databases and for missing tables/schema. An absent
    table is never reported as zero records.
    """

    code = 'STORE_UNAVAILABLE'
    status_code = 503
