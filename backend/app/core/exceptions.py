"""
Custom exceptions for the E-Filing engine.
Every rejection the engine surfaces maps to one of these types.
"""
from typing import Any, Optional


class EFilingException(Exception):
    """Base exception for all engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(EFilingException):
    """Raised when a file, request or other entity doesn't exist."""

    def __init__(
        self,
        message: str,
        entity_type: str,
        entity_id: Optional[str] = None
    ):
        details = {"entity_type": entity_type}
        if entity_id:
            details["entity_id"] = entity_id
        super().__init__(message, details, status_code=404)


class ForbiddenError(EFilingException):
    """Raised when the actor lacks the role or ownership for an operation."""

    def __init__(
        self,
        message: str,
        actor_id: Optional[str] = None,
        required: Optional[list[str]] = None,
        rule: Optional[str] = None
    ):
        details = {}
        if actor_id:
            details["actor_id"] = actor_id
        if required:
            details["required"] = required
        if rule:
            details["rule"] = rule
        super().__init__(message, details, status_code=403)


class InvalidTransitionError(EFilingException):
    """Raised for unknown action strings or actions not valid from the current state."""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        current_status: Optional[str] = None,
        allowed: Optional[list[str]] = None
    ):
        details = {}
        if action is not None:
            details["action"] = action
        if current_status:
            details["current_status"] = current_status
        if allowed:
            details["allowed"] = allowed
        super().__init__(message, details, status_code=409)


class AlreadyResolvedError(EFilingException):
    """Raised when an extension request is resolved a second time."""

    def __init__(
        self,
        message: str,
        request_id: str,
        current_status: Optional[str] = None
    ):
        details = {"request_id": request_id}
        if current_status:
            details["current_status"] = current_status
        super().__init__(message, details, status_code=409)


class ValidationError(EFilingException):
    """Raised when input data validation fails."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details, status_code=422)


class DatabaseError(EFilingException):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class ConfigurationError(EFilingException):
    """Raised when required configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        config_key: str,
        expected_type: Optional[str] = None,
        actual_value: Optional[str] = None
    ):
        details = {
            "config_key": config_key
        }
        if expected_type:
            details["expected_type"] = expected_type
        if actual_value:
            details["actual_value"] = actual_value[:50] if len(str(actual_value)) > 50 else actual_value

        super().__init__(message, details, status_code=500)
