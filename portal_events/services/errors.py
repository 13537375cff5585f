"""Exceptions shared by the registration services."""
from __future__ import annotations

from typing import Dict, List, Optional

__all__ = [
    "AlreadyCancelledError",
    "DuplicateRegistrationError",
    "EventNotFoundError",
    "EventUnavailableError",
    "InvalidTransitionError",
    "RegistrationError",
    "RegistrationNotFoundError",
    "UnauthorizedActionError",
    "ValidationError",
]


class ValidationError(Exception):
    """Raised when incoming payload validation fails."""

    def __init__(self, errors: Dict[str, List[str]], message: str = "Validation échouée."):
        super().__init__(message)
        self.errors = errors
        self.message = message


class RegistrationError(Exception):
    """Base class for registration related exceptions."""


class DuplicateRegistrationError(RegistrationError):
    """Raised when the identity already holds an active registration for the event."""


class EventUnavailableError(RegistrationError):
    """Raised when an event does not accept registrations."""


class EventNotFoundError(EventUnavailableError, LookupError):
    """Raised when an event could not be located."""


class RegistrationNotFoundError(RegistrationError, LookupError):
    """Raised when a registration could not be located."""


class UnauthorizedActionError(RegistrationError):
    """Raised when the actor may not act on a registration."""


class InvalidTransitionError(RegistrationError):
    """Raised when a registration status transition is not allowed."""

    def __init__(self, message: str, *, current: Optional[str] = None, target: Optional[str] = None):
        super().__init__(message)
        self.current = current
        self.target = target


class AlreadyCancelledError(InvalidTransitionError):
    """Raised when cancelling a registration that is already cancelled."""
