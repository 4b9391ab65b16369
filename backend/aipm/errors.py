"""Error taxonomy shared by services and the HTTP layer.

Services raise these; ``aipm.main`` turns them into
``{"error": <kind>, "message": <text>}`` responses.
"""
import enum
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    DATABASE_ERROR = "DATABASE_ERROR"
    AI_SERVICE_ERROR = "AI_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AIpmError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.kind.value, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class Unauthenticated(AIpmError):
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401


class Forbidden(AIpmError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class NotFound(AIpmError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ValidationError(AIpmError):
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400


class Conflict(AIpmError):
    kind = ErrorKind.CONFLICT
    status_code = 409


class DatabaseError(AIpmError):
    kind = ErrorKind.DATABASE_ERROR
    status_code = 500


class AiServiceError(AIpmError):
    kind = ErrorKind.AI_SERVICE_ERROR
    status_code = 500


class InternalError(AIpmError):
    kind = ErrorKind.INTERNAL_ERROR
    status_code = 500
