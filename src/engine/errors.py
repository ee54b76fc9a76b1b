"""
Domain exceptions raised by the session lifecycle engine.

Each carries the response code the API layer maps it to. Any of these means
the operation was rejected and nothing was written.
"""

from typing import Dict, Optional


class SessionEngineError(Exception):
    """Base exception for rejected lifecycle operations."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, object]:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(SessionEngineError):
    """Malformed or missing input. field_errors maps field name to problem."""

    status_code = 400

    def __init__(self, message: str, field_errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.field_errors = field_errors or {}

    def to_dict(self) -> Dict[str, object]:
        data = super().to_dict()
        data["field_errors"] = self.field_errors
        return data


class NotFoundError(SessionEngineError):
    """Referenced session, member, trainer or programme does not exist."""

    status_code = 404


class AuthorizationError(SessionEngineError):
    """Caller lacks the role or ownership the operation requires."""

    status_code = 403


class InvalidTransitionError(SessionEngineError):
    """Operation not allowed from the session's current state."""

    status_code = 409


class ConflictError(SessionEngineError):
    """The session changed since the caller read it (stale expected_version)."""

    status_code = 409
