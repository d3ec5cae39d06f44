"""Error types shared by services and the API layer."""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Job-level error returned synchronously to the caller."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"success": False, "error": error}


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(AppError):
    code = "CONFLICT"
    status_code = 409


class StateError(ConflictError):
    """Invalid state-machine transition."""


class UnauthorizedError(AppError):
    code = "UNAUTHORIZED"
    status_code = 401


class CollaboratorError(Exception):
    """A single generation or translation attempt failed."""


class CollaboratorUnavailable(Exception):
    """The collaborator could not be reached at all (system-level)."""


class CancelledByOperator(Exception):
    """Raised at an interrupt point when the owning job was paused or cancelled."""
