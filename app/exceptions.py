from typing import Any


class PortalError(Exception):
    """Base class for exceptions from within this application."""


class NotFoundError(PortalError):
    """
    Raised if a record doesn't exist, or if the caller may not see it.

    The message never distinguishes the two cases.
    """

    def __init__(self, message: str = "Application not found"):
        super().__init__(message)
        self.message = message


class InvalidTransitionError(PortalError):
    """Raised if the transition table doesn't allow moving from the current status to the requested status."""

    def __init__(self, current: str, requested: str, valid_transitions: list[str]):
        self.current = current
        self.requested = requested
        self.valid_transitions = valid_transitions
        valid = ", ".join(valid_transitions) if valid_transitions else "none (terminal status)"
        self.message = (
            f"The status transition from {current} to {requested} is not permitted. "
            f"Valid transitions from {current} are: {valid}."
        )
        super().__init__(self.message)


class SubmissionValidationError(PortalError):
    """Raised if an application is missing fields that are required for submission. Lists every missing field."""

    def __init__(self, missing_fields: list[str], labels: list[str] | None = None):
        self.missing_fields = missing_fields
        self.message = f"The following required fields are missing: {', '.join(labels or missing_fields)}"
        super().__init__(self.message)


class DraftValidationError(PortalError):
    """Raised if draft data is malformed. ``errors`` maps each field to a message."""

    def __init__(self, errors: dict[str, str], message: str = "Validation failed"):
        self.errors = errors
        self.message = message
        super().__init__(message)


class AuthenticationError(PortalError):
    """Raised by an identity driver if the identity provider's response can't be trusted."""

    def __init__(self, message: str, data: Any = None):
        self.message = message
        self.data = {} if data is None else data
        super().__init__(message)
