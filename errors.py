"""
Exception classes for the shift calendar.

Every failure the lifecycle managers report is a SchedulerError subclass;
main.py maps them onto HTTP status codes.
"""

from typing import Any, Dict, Optional


class SchedulerError(Exception):
    """Base exception for all calendar errors"""

    status_code = 400

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(SchedulerError):
    """Input rejected before any mutation"""

    status_code = 422


class NotFoundError(SchedulerError):
    """Referenced record no longer exists"""

    status_code = 404

    def __init__(self, collection: str, record_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{collection} '{record_id}' not found",
            details={"collection": collection, "id": record_id},
        )


class ConflictError(SchedulerError):
    """Duplicate or already decided record"""

    status_code = 409


class AtomicityFailure(SchedulerError):
    """A multi-record update could not be committed as a whole"""

    status_code = 409


class PermissionDeniedError(SchedulerError):
    """Acting user's role does not allow the operation"""

    status_code = 403
