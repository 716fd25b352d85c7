"""
Error kinds raised by the persistence layer and the services.

Each exception carries the HTTP status code it maps to, so the API layer
can translate any of them with a single exception handler.
"""

from typing import Any, Dict, Optional


class EventPlannerError(Exception):
    """Base exception for all application-specific errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(EventPlannerError):
    """Malformed or missing input."""

    status_code = 400


class UnauthenticatedError(EventPlannerError):
    """Missing or unusable caller identity."""

    status_code = 401


class InvalidCredentialsError(EventPlannerError):
    """Login failed. Unknown email and wrong password are not told apart."""

    status_code = 401

    def __init__(self):
        super().__init__("invalid credentials")


class ForbiddenError(EventPlannerError):
    """Caller is known but lacks the role the action requires."""

    status_code = 403


class NotFoundError(EventPlannerError):
    status_code = 404


class ConflictError(EventPlannerError):
    """A uniqueness rule would be violated."""

    status_code = 409


class UserExistsError(ConflictError):
    def __init__(self, email: str):
        super().__init__("user already exists", {"email": email})


class UnavailableError(EventPlannerError):
    """The store is busy; the request may be retried."""

    status_code = 503
