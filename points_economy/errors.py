"""
Error Taxonomy Module

Closed set of failures the points economy can report. Every error aborts the
enclosing unit of work, so none of them leaves partial state behind. Callers
match on the ``kind`` attribute (or the concrete class) instead of parsing
messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Kinds of business-rule failures"""
    UNAUTHORIZED = "unauthorized"    # Role or ownership mismatch
    NOT_FOUND = "not_found"          # Student, item or request missing
    VALIDATION = "validation"        # Missing or malformed input
    INVALID_STATE = "invalid_state"  # Transition on a non-PENDING request
    CONFLICT = "conflict"            # Insufficient balance or stock


class PointsError(Exception):
    """Base class for all points economy failures"""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Structured payload for the surrounding layer"""
        result: Dict[str, Any] = {"error": self.kind.value, "detail": self.message}
        if self.details:
            result["context"] = self.details
        return result


class UnauthorizedError(PointsError):
    """Raised when the principal may not perform the operation on the target."""
    kind = ErrorKind.UNAUTHORIZED
    status_code = 403


class NotFoundError(PointsError):
    """Raised when a student, catalog item or redemption request is missing."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ValidationError(PointsError):
    """Raised for missing or malformed input."""
    kind = ErrorKind.VALIDATION
    status_code = 400


class InvalidStateError(PointsError):
    """Raised when a transition is attempted on a request that is no longer PENDING."""
    kind = ErrorKind.INVALID_STATE
    status_code = 409


class ConflictError(PointsError):
    """Raised when balance or inventory does not cover the operation."""
    kind = ErrorKind.CONFLICT
    status_code = 409
