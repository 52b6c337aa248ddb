"""
Typed failures raised by the domain services.

Routes catch the recoverable ones (validation, conflict) to re-render forms;
everything else bubbles up to the error handlers registered by the gateway,
which map `http_status` to a user-facing page.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for every failure the services raise on purpose."""

    http_status = 500

    def __init__(self, message: str, code: str = "PORTAL_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


# --- VALIDATION (400) ---
class ValidationError(PortalError):
    """Malformed or out-of-range input; the user can fix it and resubmit."""

    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, code: str = "VALIDATION_ERROR"):
        super().__init__(message, code=code)
        self.field = field


class EmptyInputError(ValidationError):
    def __init__(self, message: str = "Input must not be empty", field: Optional[str] = None):
        super().__init__(message, field=field, code="EMPTY_INPUT")


class InvalidScore(ValidationError):
    """A survey score is missing or not an integer between 1 and 5."""

    def __init__(self, field: str):
        label = field.replace("_", " ")
        super().__init__(f"{label.capitalize()} must be a whole number from 1 to 5", field=field, code="INVALID_SCORE")


class InvalidAccount(ValidationError):
    def __init__(self, message: str = "A valid user ID is required to record a donation"):
        super().__init__(message, field="user_id", code="INVALID_ACCOUNT")


class InvalidAccountId(ValidationError):
    def __init__(self, message: str = "A valid user ID must be provided for deletion"):
        super().__init__(message, field="user_id", code="INVALID_ACCOUNT_ID")


# --- NOT FOUND (404) ---
class NotFoundError(PortalError):
    http_status = 404

    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND"):
        super().__init__(message, code=code)


class EventNotFound(NotFoundError):
    def __init__(self, message: str = "Event not found"):
        super().__init__(message, code="EVENT_NOT_FOUND")


# --- AUTHORIZATION (403) ---
class Unauthorized(PortalError):
    """The caller has no rights over the target. Never says whether it exists."""

    http_status = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="UNAUTHORIZED")


Forbidden = Unauthorized


# --- BUSINESS RULE CONFLICTS (409) ---
class ConflictError(PortalError):
    http_status = 409

    def __init__(self, message: str, code: str = "CONFLICT"):
        super().__init__(message, code=code)


class AlreadyRegistered(ConflictError):
    def __init__(self, message: str = "You are already registered for this event"):
        super().__init__(message, code="ALREADY_REGISTERED")


class EventFull(ConflictError):
    def __init__(self, message: str = "This event is full"):
        super().__init__(message, code="EVENT_FULL")


class DeadlinePassed(ConflictError):
    def __init__(self, message: str = "The registration deadline for this event has passed"):
        super().__init__(message, code="DEADLINE_PASSED")


class EventInPast(ConflictError):
    def __init__(self, message: str = "This event has already started or taken place"):
        super().__init__(message, code="EVENT_IN_PAST")


class EventAlreadyStarted(ConflictError):
    def __init__(self, message: str = "Registrations cannot be cancelled once the event has started"):
        super().__init__(message, code="EVENT_ALREADY_STARTED")


class SurveyNotEligible(ConflictError):
    def __init__(self, message: str = "You cannot submit a survey for this registration"):
        super().__init__(message, code="SURVEY_NOT_ELIGIBLE")


# --- SYSTEM FAULTS (500) ---
class ConfigurationError(PortalError):
    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION_ERROR")


class StorageError(PortalError):
    def __init__(self, message: str = "Database operation failed", code: str = "STORAGE_ERROR"):
        super().__init__(message, code=code)


class CascadeDeleteFailed(StorageError):
    def __init__(self, message: str = "Could not delete the user and related records"):
        super().__init__(message, code="CASCADE_DELETE_FAILED")
