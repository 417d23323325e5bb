"""Custom exception hierarchy for the Olympus Bank package."""

from __future__ import annotations


class OlympusBankError(Exception):
    """Base class for all Olympus Bank specific errors."""


class ValidationError(OlympusBankError, ValueError):
    """Raised when input to a mutating operation is malformed."""

    def __init__(self, message: str, *, errors: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.errors = errors or (message,)


class NotFoundError(OlympusBankError, LookupError):
    """Raised when an operation references an id that does not exist."""


class StructuralError(OlympusBankError):
    """Raised when persisted data does not match the record layout."""


class RemoteConnectionError(OlympusBankError):
    """Raised when the remote document store cannot be reached."""


class InsufficientFundsError(OlympusBankError):
    """Raised when an operation would move more money than the balance holds."""


class IncorrectPasswordError(OlympusBankError):
    """Raised when the supplied parent password does not match."""


class PersistenceError(OlympusBankError):
    """Raised when the local store could not write the record."""
