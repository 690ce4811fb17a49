"""Custom exceptions for the bookkeeping bot."""


class CatatBotError(Exception):
    """Base exception for all bot errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationError(CatatBotError):
    """Raised when user input fails validation. Always recovered by re-prompting."""


class SessionIntegrityError(CatatBotError):
    """Raised when a session lacks a field its current state requires."""

    def __init__(self, message: str = "Session is missing required fields"):
        super().__init__(message)


class TransientPersistenceError(CatatBotError):
    """Raised when an external dependency fails during submission."""

    def __init__(self, message: str = "Persistence operation failed"):
        super().__init__(message)

