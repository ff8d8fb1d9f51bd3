from typing import Any, Dict, Optional

from fastapi import status


class AssessmentEngineError(Exception):
    """
    Base class for business-rule violations raised by the finance services.

    Each subclass carries the HTTP status the API layer answers with.
    """
    status_code: int = status.HTTP_400_BAD_REQUEST
    kind: str = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AssessmentEngineError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_error"


class NotFoundError(AssessmentEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class ConflictError(AssessmentEngineError):
    status_code = status.HTTP_409_CONFLICT
    kind = "conflict"


class StateError(AssessmentEngineError):
    status_code = status.HTTP_409_CONFLICT
    kind = "invalid_state"
